"""
Game rule constants for scoring, debt allocation and buffalo calls.

Every value can be overridden from the environment so the rules can be
tuned per deployment without a code change.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# Number of slots in a prediction / result list
TOP_N = 5

# Comparator weights
EXACT_MATCH_WEIGHT = int(os.getenv("SCORING_EXACT_MATCH_WEIGHT", "3"))  # points per exact position match
ACCURACY_MAX = int(os.getenv("SCORING_ACCURACY_MAX", "5"))  # points for a perfect rank guess, minus rank distance

# Ledger allocation policy: "adjacent" or "rank_gap"
DEBT_POLICY = os.getenv("BUFFALO_DEBT_POLICY", "adjacent").lower()
DEBT_UNITS = int(os.getenv("BUFFALO_DEBT_UNITS", "1"))

# Buffalo call timer bounds (minutes)
CALL_MIN_MINUTES = int(os.getenv("CALL_MIN_MINUTES", "1"))
CALL_MAX_MINUTES = int(os.getenv("CALL_MAX_MINUTES", "1440"))
CALL_DEFAULT_MINUTES = int(os.getenv("CALL_DEFAULT_MINUTES", "60"))

# Listing limits
FEED_PAGE_SIZE = 50
RESOLVED_REQUESTS_LIMIT = 10

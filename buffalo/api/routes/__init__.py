"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error mapping) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from buffalo.services.errors import (
    ValidationError,
    NotFoundError,
    ConflictError,
    InsufficientBalanceError,
    OutOfRangeError,
)

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

# ---------------------------------------------------------------------------
# Domain error mapping
# ---------------------------------------------------------------------------
_ERROR_STATUS = (
    (NotFoundError, 404),
    (ConflictError, 409),  # includes InvalidTransitionError
    (InsufficientBalanceError, 409),
    (OutOfRangeError, 400),
    (ValidationError, 400),
)


def domain_error(e: ValueError) -> HTTPException:
    """Translate a service error into the HTTPException the client sees."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(e, error_type):
            return HTTPException(status_code=status_code, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from buffalo.api.routes.submissions import router as submissions_router  # noqa: E402
from buffalo.api.routes.balances import router as balances_router  # noqa: E402
from buffalo.api.routes.calls import router as calls_router  # noqa: E402
from buffalo.api.routes.requests import router as requests_router  # noqa: E402
from buffalo.api.routes.feed import router as feed_router  # noqa: E402

router = APIRouter()
router.include_router(submissions_router)
router.include_router(balances_router)
router.include_router(calls_router)
router.include_router(requests_router)
router.include_router(feed_router)

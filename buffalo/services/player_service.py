"""
Player lookups shared by the game services.
"""

from typing import Dict, Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from buffalo.database.models import Player
from buffalo.services.errors import NotFoundError, ValidationError


def format_player(player: Player) -> Dict:
    return {
        "id": player.id,
        "display_name": player.display_name,
        "email": player.email,
        "is_admin": player.is_admin,
    }


async def create_player(
    session: AsyncSession, display_name: str, email: Optional[str] = None, is_admin: bool = False
) -> Dict:
    """
    Create a player profile.

    Raises:
        ValidationError: If the display name is blank
    """
    if not display_name or not display_name.strip():
        raise ValidationError("Display name is required")
    player = Player(display_name=display_name.strip(), email=email, is_admin=is_admin)
    session.add(player)
    await session.flush()
    return format_player(player)


async def get_player(session: AsyncSession, player_id: int) -> Optional[Player]:
    result = await session.execute(select(Player).where(Player.id == player_id))
    return result.scalar_one_or_none()


async def get_players_by_id(session: AsyncSession, player_ids: Iterable[int]) -> Dict[int, Player]:
    """
    Batch-fetch players and require every one of them to exist.

    Returns:
        Dict mapping player id to Player

    Raises:
        NotFoundError: If any id has no player
    """
    ids = set(player_ids)
    result = await session.execute(select(Player).where(Player.id.in_(ids)))
    players = {p.id: p for p in result.scalars().all()}
    missing = ids - set(players)
    if missing:
        raise NotFoundError(f"Player not found: {', '.join(str(i) for i in sorted(missing))}")
    return players

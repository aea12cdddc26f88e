"""
Per-account game statistics.

Only authenticated accounts have stats; anonymous room players never reach
this module. Writes go straight through the ORM like the rest of the
persistence code, the aggregate row is created on first use.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Literal, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import GameRecord, PlayerStats

logger = logging.getLogger(__name__)

GameResult = Literal["win", "loss", "draw"]


class StatsRecorder:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def record_game(
        self,
        user_id: str,
        *,
        game_type: str,
        result: GameResult,
        score: int = 0,
        room_code: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        players_count: int = 0,
        drinking_mode: bool = False,
        drinks_taken: int = 0,
        opponents: Iterable[Dict[str, Any]] = (),
    ) -> None:
        async with self.session_maker() as session:
            session.add(
                GameRecord(
                    user_id=user_id,
                    game_type=game_type,
                    room_code=room_code,
                    result=result,
                    score=score,
                    duration_minutes=duration_minutes,
                    players_count=players_count,
                    drinking_mode=drinking_mode,
                    drinks_taken=drinks_taken,
                    opponents=list(opponents),
                )
            )

            stats = await session.get(PlayerStats, user_id)
            if stats is None:
                stats = PlayerStats(
                    user_id=user_id, total_games=0, wins=0, losses=0, draws=0, total_drinks=0, total_minutes=0
                )
                session.add(stats)

            stats.total_games += 1
            if result == "win":
                stats.wins += 1
            elif result == "loss":
                stats.losses += 1
            else:
                stats.draws += 1
            stats.total_drinks += drinks_taken
            stats.total_minutes += duration_minutes or 0

            await session.commit()
        logger.info("Stats: recorded %s %s for %s", game_type, result, user_id)

    async def get_player_stats(self, user_id: str) -> Optional[Dict[str, Any]]:
        async with self.session_maker() as session:
            stats = await session.get(PlayerStats, user_id)
            if stats is None:
                return None
            win_rate = round(stats.wins / stats.total_games * 100, 1) if stats.total_games else 0
            return {
                "userId": stats.user_id,
                "totalGames": stats.total_games,
                "wins": stats.wins,
                "losses": stats.losses,
                "draws": stats.draws,
                "totalDrinks": stats.total_drinks,
                "totalMinutes": stats.total_minutes,
                "winRate": win_rate,
            }

    async def get_history(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(GameRecord)
                .where(GameRecord.user_id == user_id)
                .order_by(desc(GameRecord.created_at))
                .limit(limit)
            )
            return [
                {
                    "gameType": row.game_type,
                    "roomCode": row.room_code,
                    "result": row.result,
                    "score": row.score,
                    "durationMinutes": row.duration_minutes,
                    "drinksTaken": row.drinks_taken,
                    "createdAt": row.created_at.isoformat() if row.created_at else None,
                }
                for row in result.scalars().all()
            ]

"""
Table definitions for rooms, memberships, chat, invites, the card catalog
and per-account game statistics.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GameRoom(Base):
    __tablename__ = "game_rooms"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    room_code: Mapped[str] = mapped_column(String(6), index=True, nullable=False)
    game_type: Mapped[str] = mapped_column(String, nullable=False)
    host_id: Mapped[str] = mapped_column(String, nullable=False)
    host_name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, default="waiting", nullable=False)
    max_players: Mapped[int] = mapped_column(Integer, default=8)
    min_players: Mapped[int] = mapped_column(Integer, default=2)
    current_turn: Mapped[int] = mapped_column(Integer, default=0)
    game_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    settings: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_spectators: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class RoomPlayer(Base):
    __tablename__ = "room_players"
    __table_args__ = (UniqueConstraint("room_id", "player_id"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    player_id: Mapped[str] = mapped_column(String, nullable=False)
    player_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    is_host: Mapped[bool] = mapped_column(Boolean, default=False)
    is_ready: Mapped[bool] = mapped_column(Boolean, default=False)
    is_connected: Mapped[bool] = mapped_column(Boolean, default=True)
    player_order: Mapped[int] = mapped_column(Integer, default=0)
    score: Mapped[int] = mapped_column(Integer, default=0)
    player_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class RoomSpectator(Base):
    __tablename__ = "room_spectators"
    __table_args__ = (UniqueConstraint("room_id", "spectator_id"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    spectator_id: Mapped[str] = mapped_column(String, nullable=False)
    spectator_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    is_connected: Mapped[bool] = mapped_column(Boolean, default=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    player_id: Mapped[str] = mapped_column(String, nullable=False)
    player_name: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String, default="chat")
    # "metadata" is reserved on declarative classes
    message_metadata: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class GameInvite(Base):
    __tablename__ = "game_invites"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    room_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    invite_code: Mapped[str] = mapped_column(String(12), unique=True, nullable=False)
    created_by: Mapped[str] = mapped_column(String, nullable=False)
    max_uses: Mapped[int] = mapped_column(Integer, default=10)
    uses_count: Mapped[int] = mapped_column(Integer, default=0)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class GameCard(Base):
    __tablename__ = "parsed_game_cards"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    game_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    card_type: Mapped[str] = mapped_column(String, nullable=False)
    card_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    card_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    card_effect: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    card_category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    card_number: Mapped[int] = mapped_column(Integer, default=0)
    drink_count: Mapped[int] = mapped_column(Integer, default=0)
    card_metadata: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)


class PlayerStats(Base):
    __tablename__ = "player_stats"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    total_games: Mapped[int] = mapped_column(Integer, default=0)
    wins: Mapped[int] = mapped_column(Integer, default=0)
    losses: Mapped[int] = mapped_column(Integer, default=0)
    draws: Mapped[int] = mapped_column(Integer, default=0)
    total_drinks: Mapped[int] = mapped_column(Integer, default=0)
    total_minutes: Mapped[int] = mapped_column(Integer, default=0)


class GameRecord(Base):
    __tablename__ = "game_records"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    game_type: Mapped[str] = mapped_column(String, nullable=False)
    room_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    result: Mapped[str] = mapped_column(String, nullable=False)
    score: Mapped[int] = mapped_column(Integer, default=0)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    players_count: Mapped[int] = mapped_column(Integer, default=0)
    drinking_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    drinks_taken: Mapped[int] = mapped_column(Integer, default=0)
    opponents: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

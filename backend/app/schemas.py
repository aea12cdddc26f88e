from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class PlayerIdentity(BaseModel):
    player_id: str
    user_id: str | None = None


class SessionOut(BaseModel):
    token: str
    player_id: str
    user_id: str | None = None
    player_name: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class SessionRequest(BaseModel):
    player_id: str | None = None
    player_name: str | None = None
    user_id: str | None = None

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

RoomStatus = Literal["waiting", "playing", "finished"]
MessageType = Literal["chat", "system", "game_event", "emote", "sticker", "drink"]
DrinkIntensity = Literal["light", "medium", "heavy"]
CardLocation = Literal["deck", "hand", "discard", "table", "removed"]

SpaceType = Literal[
    "start", "finish", "blue", "yellow", "green", "red",
    "sewer", "shitfaced", "crossing", "paddle_shop", "dog_poo",
    "shit_pile", "safe",
]

SpaceEffectType = Literal[
    "none", "paddle_gain", "paddle_lose", "move_forward", "move_back",
    "go_to_start", "take_lead", "skip_turn", "extra_roll", "draw_card", "swap_random",
]

CardActionType = Literal[
    "move_back", "move_forward",
    "paddle_gain", "paddle_lose", "paddle_steal", "paddle_gift_right", "paddle_gift_choose",
    "lose_turn", "extra_turn", "draw_again",
    "go_to_space", "go_to_space_and_gain_paddle",
    "take_lead",
    "send_player_to", "bring_player", "bring_all_players",
    "go_back_with_player", "behind_leader",
    "skip_yellow", "move_player_behind_last", "move_ahead_of_player",
    "move_both_to_space",
    "no_effect",
]


# ---------- rooms ----------
class GameRoom(BaseModel):
    id: str
    room_code: str
    game_type: str
    host_id: str
    host_name: str
    status: RoomStatus = "waiting"
    max_players: int = 8
    min_players: int = 2
    current_turn: int = 0
    game_data: Dict[str, Any] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_private: bool = False
    allow_spectators: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


class RoomPlayer(BaseModel):
    id: str
    room_id: str
    player_id: str
    player_name: str
    user_id: Optional[str] = None
    is_host: bool = False
    is_ready: bool = False
    is_connected: bool = True
    player_order: int = 0
    score: int = 0
    player_data: Dict[str, Any] = Field(default_factory=dict)
    joined_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


class RoomSpectator(BaseModel):
    id: str
    room_id: str
    spectator_id: str
    spectator_name: str
    user_id: Optional[str] = None
    is_connected: bool = True
    joined_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


class ChatMessage(BaseModel):
    id: str
    room_id: str
    player_id: str
    player_name: str
    message: str
    message_type: MessageType = "chat"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


class DrinkingModeSettings(BaseModel):
    enabled: bool = False
    intensity: DrinkIntensity = "medium"
    drinks_this_game: int = Field(0, alias="drinksThisGame")

    model_config = ConfigDict(populate_by_name=True)


# ---------- synchronized card piles ----------
class SyncedCard(BaseModel):
    id: str
    card_id: str = Field(alias="cardId")
    owner_id: Optional[str] = Field(default=None, alias="ownerId")
    location: CardLocation = "deck"
    position: int = 0
    is_flipped: bool = Field(default=False, alias="isFlipped")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class CardAction(BaseModel):
    type: Literal["draw", "discard", "play", "shuffle", "flip", "move", "deal"]
    player_id: str = Field(alias="playerId")
    card_ids: List[str] = Field(default_factory=list, alias="cardIds")
    from_: Optional[Literal["deck", "hand", "discard", "table"]] = Field(default=None, alias="from")
    to: Optional[Literal["deck", "hand", "discard", "table"]] = None
    timestamp: float

    model_config = ConfigDict(populate_by_name=True)


class CardGameState(BaseModel):
    deck_cards: List[SyncedCard] = Field(default_factory=list, alias="deckCards")
    discard_pile: List[SyncedCard] = Field(default_factory=list, alias="discardPile")
    table_cards: List[SyncedCard] = Field(default_factory=list, alias="tableCards")
    player_hands: Dict[str, List[SyncedCard]] = Field(default_factory=dict, alias="playerHands")
    current_drawer: Optional[str] = Field(default=None, alias="currentDrawer")
    last_action: Optional[CardAction] = Field(default=None, alias="lastAction")
    shuffle_seed: int = Field(0, alias="shuffleSeed")

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------- board-race deck & cards ----------
class DeckState(BaseModel):
    draw_pile: List[str] = Field(default_factory=list, alias="drawPile")
    discard_pile: List[str] = Field(default_factory=list, alias="discardPile")
    total_cards: int = Field(0, alias="totalCards")
    last_shuffled: float = Field(0.0, alias="lastShuffled")
    reshuffle_count: int = Field(0, alias="reshuffleCount")

    model_config = ConfigDict(populate_by_name=True)


class SpaceEffect(BaseModel):
    type: SpaceEffectType = "none"
    value: Optional[int] = None
    text: str
    emoji: str = ""
    space_type: Optional[SpaceType] = Field(default=None, alias="spaceType")
    space_name: Optional[str] = Field(default=None, alias="spaceName")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ParsedCardAction(BaseModel):
    type: CardActionType
    value: Optional[int] = None
    target_space: Optional[SpaceType] = Field(default=None, alias="targetSpace")
    needs_player_select: bool = Field(default=False, alias="needsPlayerSelect")
    text: str

    model_config = ConfigDict(populate_by_name=True)


class CatalogCard(BaseModel):
    id: str
    game_id: str
    card_type: str
    card_name: Optional[str] = None
    card_text: Optional[str] = None
    card_effect: Optional[str] = None
    card_category: Optional[str] = None
    card_number: int = 0
    drink_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")


class TurnPlayer(BaseModel):
    player_id: str
    player_name: str


# ---------- API requests ----------
class CreateRoomRequest(BaseModel):
    game_type: str
    player_name: str
    is_private: bool = False
    drinking_mode: bool = False

    model_config = ConfigDict(extra="ignore")


class JoinRoomRequest(BaseModel):
    room_code: str
    player_name: str


class InviteJoinRequest(BaseModel):
    invite_code: str
    player_name: str


class EndGameRequest(BaseModel):
    winner_id: Optional[str] = None
    scores: Dict[str, int] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    message: str
    message_type: MessageType = "chat"


class KickRequest(BaseModel):
    player_id: str


class BotRequest(BaseModel):
    name: str = "Bot"


class IntensityRequest(BaseModel):
    intensity: DrinkIntensity


class DrinkEventRequest(BaseModel):
    rule: str
    target_player: Optional[str] = None


class CardInitRequest(BaseModel):
    game_id: str
    card_type: Optional[str] = None
    seed: Optional[int] = None


class CardDrawRequest(BaseModel):
    count: int = Field(1, ge=1)


class CardMoveRequest(BaseModel):
    card_id: str


class CreekTurnRequest(BaseModel):
    roll: Optional[int] = Field(default=None, ge=1, le=6)

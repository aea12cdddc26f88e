from __future__ import annotations

import logging
import random
from typing import Any, Dict, Iterable, List, Optional

from models import CatalogCard
from store import RoomStore

logger = logging.getLogger(__name__)

CARDS_TABLE = "parsed_game_cards"

# room game types and file names use several spellings for the same card set
GAME_ID_ALIASES: Dict[str, str] = {
    "up-shitz-creek": "shitz-creek",
    "upshitzcreek": "shitz-creek",
    "shitzcreek": "shitz-creek",
    "slanging-cards": "slanging-shit",
    "slanging-shit-cards": "slanging-shit",
    "slanging-shit-charades-cards": "slanging-shit",
    "slangingshit": "slanging-shit",
    "ocraps": "o-craps",
    "letgo": "let-that-shit-go",
    "letthatshitgo": "let-that-shit-go",
}


def normalize_game_id(game_id: str) -> str:
    key = game_id.strip().lower()
    return GAME_ID_ALIASES.get(key, key)


class CardCatalog:
    """Read side of the parsed card rows, keyed by (game, type, category)."""

    def __init__(self, store: RoomStore):
        self.store = store

    async def fetch_cards(
        self,
        game_id: str,
        card_type: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[CatalogCard]:
        filters: Dict[str, Any] = {"game_id": normalize_game_id(game_id)}
        if card_type is not None:
            filters["card_type"] = card_type
        if category is not None:
            filters["card_category"] = category
        rows = await self.store.select(CARDS_TABLE, order_by=("card_number",), **filters)
        return [CatalogCard.model_validate(row) for row in rows]

    async def fetch_random(
        self,
        game_id: str,
        card_type: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> Optional[CatalogCard]:
        cards = await self.fetch_cards(game_id, card_type)
        if not cards:
            return None
        return (rng or random).choice(cards)

    async def add_cards(self, rows: Iterable[Dict[str, Any]]) -> List[CatalogCard]:
        added = []
        for row in rows:
            row = {**row, "game_id": normalize_game_id(row["game_id"])}
            inserted = await self.store.insert(CARDS_TABLE, row)
            added.append(CatalogCard.model_validate(inserted))
        if added:
            logger.info("Catalog: added %s card(s) for %s", len(added), added[0].game_id)
        return added

# mint_engine/services/asset_issuer.py
from __future__ import annotations

import logging
from typing import List, Protocol

from mint_engine.models.collection import Collection
from mint_engine.models.item import Item

logger = logging.getLogger(__name__)


class AssetIssuer(Protocol):
    """
    Hook run after a mint is committed. Implementations issue the on-chain
    asset (or queue it); failures never roll back the recorded mint.
    """

    def issue(self, *, collection: Collection, items: List[Item], wallet: str, signature: str) -> None:
        ...


class OffChainIssuer:
    """Default issuer: attribution lives in the database only."""

    def issue(self, *, collection: Collection, items: List[Item], wallet: str, signature: str) -> None:
        logger.info(
            "asset_issuance_recorded",
            extra={
                "collection_id": str(collection.id),
                "collection_mint_address": collection.collection_mint_address,
                "item_ids": [str(i.id) for i in items],
                "wallet": wallet,
                "signature": signature,
            },
        )

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class ReserveRequest(BaseModel):
    """
    Either collectionId or collectionAddress identifies the drop.
    """
    collectionId: Optional[str] = None
    collectionAddress: Optional[str] = None
    quantity: int = Field(..., ge=1)
    wallet: str = Field(..., min_length=32, max_length=64)
    phaseId: Optional[uuid.UUID] = None
    allowlistProof: Optional[List[str]] = None

    @model_validator(mode="after")
    def _one_collection_ref(self) -> "ReserveRequest":
        if not (self.collectionId or self.collectionAddress):
            raise ValueError("collectionId or collectionAddress is required.")
        return self

    @property
    def collection_ref(self) -> str:
        return self.collectionId or self.collectionAddress  # type: ignore[return-value]


class ReservedItem(BaseModel):
    id: str
    name: str
    imageUri: Optional[str] = None
    itemIndex: int


class ReservationView(BaseModel):
    idempotencyKey: str
    collectionId: str
    phaseId: Optional[str] = None
    wallet: str
    quantity: int
    itemIds: List[str]
    items: List[ReservedItem] = Field(default_factory=list)
    status: str
    expiresAt: str
    signature: Optional[str] = None
    failureReason: Optional[str] = None


class UnsignedTransactionView(BaseModel):
    base64: Optional[str] = None
    recentBlockhash: Optional[str] = None
    feePayer: str


class ReserveResponse(BaseModel):
    reservation: ReservationView
    priceBreakdown: Dict[str, Any]
    transaction: UnsignedTransactionView
    replayed: bool = False


class CompleteRequest(BaseModel):
    signature: str = Field(..., min_length=64, max_length=128)
    wallet: str = Field(..., min_length=32, max_length=64)
    itemIds: Optional[List[uuid.UUID]] = None


class CompleteResponse(BaseModel):
    reservationKey: str
    transactionSignature: str
    wallet: str
    mintedItems: List[ReservedItem]
    replayed: bool = False


class StatusResponse(BaseModel):
    status: str
    transaction: Optional[UnsignedTransactionView] = None
    reservation: ReservationView
    priceBreakdown: Dict[str, Any]

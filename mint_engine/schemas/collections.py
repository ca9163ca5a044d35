from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class CollectionStats(BaseModel):
    collectionId: str
    status: str
    totalSupply: int
    minted: int
    reserved: int
    available: int


class PhaseView(BaseModel):
    id: str
    name: str
    priceSol: str
    startTime: str
    endTime: Optional[str] = None
    isAllowList: bool
    mintLimit: Optional[int] = None
    merkleRoot: Optional[str] = None
    isActive: bool


class PhaseList(BaseModel):
    collectionId: str
    phases: List[PhaseView]


class AllowListProof(BaseModel):
    phaseId: str
    wallet: str
    merkleRoot: str
    proof: List[str]

from mint_engine.schemas.mint import (
    ReserveRequest,
    ReserveResponse,
    CompleteRequest,
    CompleteResponse,
    StatusResponse,
    ReservationView,
)
from mint_engine.schemas.collections import CollectionStats, PhaseView, PhaseList, AllowListProof

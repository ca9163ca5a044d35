# Import every model so Base.metadata is complete for create_all / Alembic.
from mint_engine.models.collection import Collection  # noqa: F401
from mint_engine.models.item import Item  # noqa: F401
from mint_engine.models.mint_phase import MintPhase  # noqa: F401
from mint_engine.models.reservation import Reservation  # noqa: F401
from mint_engine.models.mint_transaction import MintTransaction  # noqa: F401
from mint_engine.models.audit_log import AuditLog  # noqa: F401

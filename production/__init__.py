from .context import CallerContext
from .errors import Conflict, Forbidden, NotFound, ProductionError, ValidationError
from .status import ArtifactType, DraftStage, PaymentSource, PaymentStatus, Role, ShortStatus

__all__ = [
    "ArtifactType",
    "CallerContext",
    "Conflict",
    "DraftStage",
    "Forbidden",
    "NotFound",
    "PaymentSource",
    "PaymentStatus",
    "ProductionError",
    "Role",
    "ShortStatus",
    "ValidationError",
]

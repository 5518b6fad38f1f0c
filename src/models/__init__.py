from src.models.base import Base
from src.models.ledger import ClaimLock, Distribution, FeeClaim, LaunchedToken

__all__ = [
    "Base",
    "FeeClaim",
    "Distribution",
    "ClaimLock",
    "LaunchedToken",
]

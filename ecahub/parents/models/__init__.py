from ecahub.core.database import Base
from .selections import EcaSelection

__all__ = [
    "Base",
    "EcaSelection",
]

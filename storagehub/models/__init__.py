"""SQLAlchemy ORM models for StorageHub."""

from storagehub.models.base import Base
from storagehub.models.transfer import TransferFile

__all__ = [
    "Base",
    "TransferFile",
]

"""Application-level exception types.

Convention:
- ``RecordStoreError``: the record store could not be reached or refused a
  write. Raised by ``RecordStore`` in place of the underlying SQLAlchemy error.
  The sync engine aborts the current cycle on it; the HTTP layer answers 503.
- ``ValueError``: for caller input that fails validation (negative sizes,
  empty names, malformed protocol headers). The HTTP layer answers 422.
"""

from __future__ import annotations


class RecordStoreError(Exception):
    """Raised when a record store operation fails."""


class InvalidRangeHeaderError(ValueError):
    """Raised when a resumable-continuation ``Range`` header cannot be parsed."""

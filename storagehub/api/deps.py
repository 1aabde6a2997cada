"""Shared API dependencies."""

from __future__ import annotations

from fastapi import Request

from storagehub.hub import StorageHub


def get_hub(request: Request) -> StorageHub:
    """Get the StorageHub instance from app state."""
    hub: StorageHub = request.app.state.hub
    return hub

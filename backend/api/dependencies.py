"""
Dependency injection for the API service.
Provides the running ticker service to route handlers.
"""
from __future__ import annotations

from ticker.service import TickerService

# Module-level singleton, initialized at startup
_service: TickerService | None = None


def init_dependencies(service: TickerService | None) -> None:
    """Initialize (or clear, with None) the module-level singleton. Called once at startup."""
    global _service
    _service = service


def get_ticker_service() -> TickerService:
    """FastAPI dependency: returns the shared TickerService."""
    if _service is None:
        raise RuntimeError("TickerService not initialized; call init_dependencies first")
    return _service

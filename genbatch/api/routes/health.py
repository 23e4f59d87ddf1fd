from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict[str, Any]:
    """Liveness probe; also reports how many tasks are in flight."""
    stats = request.app.state.scheduler.registry.stats()
    return {"status": "ok", "in_flight": stats.in_flight}

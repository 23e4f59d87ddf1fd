from __future__ import annotations

from genbatch.api.routes.health import router as health_router
from genbatch.api.routes.tasks import router as tasks_router

__all__ = ["health_router", "tasks_router"]

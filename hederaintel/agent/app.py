"""Status API for a running agent.

Read-only: ``/api/health`` for liveness checks and ``/api/status`` for the
router's identity, connections and in-flight work.  Served by
``hederaintel listen --status-port`` in the agent's own event loop.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.routing import APIRouter

from hederaintel import __version__

if TYPE_CHECKING:
    from hederaintel.agent.router import ProtocolRouter

api = APIRouter(prefix="/api")


@api.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@api.get("/status")
async def status(request: Request) -> dict[str, Any]:
    router: ProtocolRouter = request.app.state.router
    return {"version": __version__, **router.status()}


def create_status_app(router: ProtocolRouter) -> FastAPI:
    app = FastAPI(title="HederaIntel Agent", version=__version__)
    app.state.router = router
    app.include_router(api)
    return app

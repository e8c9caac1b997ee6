"""
FastAPI control surface for sceneify.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ..config import SceneifyConfig
from ..context import SceneifyContext
from ..declarations import check_consistent_kinds
from ..errors import (
    CleanError,
    ConflictError,
    DeclarationError,
    GatewayError,
    NotFoundError,
    OwnershipViolationError,
    SceneifyError,
    SyncError,
)
from ..runtime import Scene
from . import schemas

LOG = logging.getLogger(__name__)


def status_for(exc: SceneifyError) -> int:
    if isinstance(exc, SyncError):
        return status_for(exc.errors[0]) if exc.errors else 500
    if isinstance(exc, DeclarationError):
        return 422
    if isinstance(exc, (ConflictError, OwnershipViolationError)):
        return 409
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (GatewayError, CleanError)):
        return 502
    return 500


def scene_summary(scene: Scene) -> schemas.SceneSummary:
    return schemas.SceneSummary(
        name=scene.name,
        items={key: item.id for key, item in scene.items().items()},
        dynamic_items=[item.id for item in scene.dynamic_items],
        filters=[handle.name for handle in scene.filters.values()],
    )


def create_app(
    *,
    context: Optional[SceneifyContext] = None,
    config: Optional[SceneifyConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    """
    Build the API app around ``context``.  The gateway is usually connected
    and closed by ``lifespan``; without a context every endpoint but
    ``/healthz`` answers 503.
    """

    settings = config or SceneifyConfig()
    # One writer at a time: sync and clean share the context.
    lock = asyncio.Lock()

    def current_context() -> SceneifyContext:
        if context is None:
            raise HTTPException(status_code=503, detail="Not connected to OBS")
        return context

    app = FastAPI(title="sceneify API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    async def healthz() -> dict:
        connected = bool(getattr(context.gateway, "connected", True)) if context is not None else False
        return {
            "status": "ok",
            "obs_url": settings.obs_url,
            "connected": connected,
            "scenes": len(context.scenes) if context is not None else 0,
        }

    @app.get("/scenes", response_model=schemas.SyncResponse)
    async def list_scenes() -> schemas.SyncResponse:
        ctx = current_context()
        return schemas.SyncResponse(scenes={name: scene_summary(scene) for name, scene in ctx.scenes.items()})

    @app.get("/scenes/{name}", response_model=schemas.SceneSummary)
    async def get_scene(name: str) -> schemas.SceneSummary:
        scene = current_context().scene(name)
        if scene is None:
            raise HTTPException(status_code=404, detail=f"Scene '{name}' has not been synced")
        return scene_summary(scene)

    @app.post("/sync", response_model=schemas.SyncResponse)
    async def sync(document: schemas.DeclarationDocument, clean: bool = False) -> schemas.SyncResponse:
        ctx = current_context()
        async with lock:
            try:
                declarations = document.build()
                check_consistent_kinds(declarations)
                scenes = await ctx.sync_all(declarations)
                if clean:
                    await ctx.clean()
            except SceneifyError as exc:
                LOG.warning("Sync request failed: %s", exc)
                raise HTTPException(status_code=status_for(exc), detail=str(exc)) from exc
        return schemas.SyncResponse(scenes={name: scene_summary(scene) for name, scene in scenes.items()})

    @app.post("/clean", response_model=schemas.CleanResponse)
    async def clean() -> schemas.CleanResponse:
        ctx = current_context()
        async with lock:
            try:
                report = await ctx.clean()
            except CleanError as exc:
                LOG.warning("Clean request failed: %s", exc)
                raise HTTPException(status_code=502, detail=exc.report.to_dict()) from exc
            except SceneifyError as exc:
                raise HTTPException(status_code=status_for(exc), detail=str(exc)) from exc
        return schemas.CleanResponse(**report.to_dict())

    return app

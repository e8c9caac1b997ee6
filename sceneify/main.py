"""
Command line entrypoint.

``sceneify apply FILE`` syncs every scene of a declaration document and
optionally removes what is no longer declared; ``sceneify serve`` runs the
HTTP control API against one long-lived OBS connection.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from .api.schemas import load_document
from .api.server import create_app
from .config import SceneifyConfig, build_context, load_config
from .declarations import check_consistent_kinds
from .errors import SceneifyError, SyncError
from .gateway.websocket import OBSWebSocketGateway
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


def create_gateway(config: SceneifyConfig) -> OBSWebSocketGateway:
    return OBSWebSocketGateway(
        config.obs_url,
        password=config.obs_password,
        request_timeout=config.request_timeout,
    )


async def apply(config: SceneifyConfig, document_path: Path, *, clean: bool = False) -> int:
    """Sync the document at ``document_path``; returns a process exit code."""

    declarations = load_document(document_path).build()
    check_consistent_kinds(declarations)

    failed = False
    async with create_gateway(config) as gateway:
        context = build_context(config, gateway)
        for declaration in declarations:
            try:
                scene = await context.sync(declaration)
            except SyncError as exc:
                failed = True
                for error in exc.errors:
                    LOG.error("%s: %s", declaration.name, error)
                continue
            LOG.info("Synced scene '%s' (%d item(s))", scene.name, len(scene.items()))

        if clean and not failed:
            report = await context.clean()
            LOG.info("Removed %d object(s)", report.removed)
        elif clean:
            LOG.warning("Skipping clean because some scenes failed to sync")
    return 1 if failed else 0


async def serve(config: SceneifyConfig, host: str = "127.0.0.1", port: int = 8080) -> None:
    """
    Run the control API inside an asyncio loop.

    The OBS connection is opened when the app starts and closed on shutdown.
    """

    import uvicorn

    gateway = create_gateway(config)
    context = build_context(config, gateway)

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info("Connecting to OBS at %s", config.obs_url)
        await gateway.connect()
        try:
            yield
        finally:
            LOG.info("Closing OBS connection")
            await gateway.close()

    app = create_app(context=context, config=config, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_config=None,
        log_level=config.log_level.lower(),
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sceneify", description="Declarative OBS scene management")
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    apply_parser = subparsers.add_parser("apply", help="sync the scenes of a declaration document")
    apply_parser.add_argument("document", type=Path, help="YAML or JSON declaration document")
    apply_parser.add_argument(
        "--clean", action="store_true", help="remove owned objects the document no longer declares"
    )

    serve_parser = subparsers.add_parser("serve", help="run the HTTP control API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="bind host for the API server")
    serve_parser.add_argument("--port", type=int, default=8080, help="bind port for the API server")
    return parser.parse_args(argv)


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except SceneifyError as exc:
        configure_logging()
        LOG.error("%s", exc)
        raise SystemExit(2) from exc
    configure_logging(config.log_level)

    try:
        if args.command == "apply":
            code = asyncio.run(apply(config, args.document, clean=args.clean))
        else:
            asyncio.run(serve(config, host=args.host, port=args.port))
            code = 0
    except KeyboardInterrupt:
        LOG.info("Interrupted by user.")
        code = 130
    except SceneifyError as exc:
        LOG.error("%s", exc)
        code = 1
    if code:
        raise SystemExit(code)


if __name__ == "__main__":
    run()

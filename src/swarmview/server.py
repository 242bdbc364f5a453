"""Swarmview dashboard server.

HTTP endpoints for one-shot queries and a WebSocket endpoint that streams
live snapshots of a watched session.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from . import __version__
from .config import WatchConfig, load_config
from .logging_manager import LoggingManager
from .monitoring.identity import IdentityResolver
from .monitoring.models import SessionSnapshot
from .monitoring.session_monitor import SessionMonitor, normalize_path
from .monitoring.watcher import WatchRegistry
from .narration import DEFAULT_LANGUAGE, Narrator
from .sessions import deduplicate_sessions, list_sessions
from .timeutils import utc_now

logger = logging.getLogger(__name__)


class NarrateRequest(BaseModel):
    text: str = ""
    language: str = DEFAULT_LANGUAGE
    timestamp: str | None = None


class WebSocketSubscriber:
    """Delivers a watched session's snapshots to one WebSocket client."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.session_path: Path | None = None
        self._send_lock = asyncio.Lock()

    async def send(self, payload: dict[str, Any]) -> None:
        async with self._send_lock:
            await self.websocket.send_json(payload)

    async def on_snapshot(self, snapshot: SessionSnapshot) -> None:
        await self.send(snapshot.to_dict())

    async def on_error(self, error: Exception) -> None:
        await self.send(
            {
                "type": "watchError",
                "sessionId": str(self.session_path) if self.session_path else None,
                "error": str(error),
            }
        )


class DashboardServer:
    """Wires the session monitor, watch registry and narrator into a FastAPI app."""

    def __init__(
        self,
        config: WatchConfig | None = None,
        registry: WatchRegistry | None = None,
        narrator: Narrator | None = None,
    ):
        """Initialize the dashboard server.

        Args:
            config: Configuration (defaults to WatchConfig()).
            registry: Watch registry (defaults to one over a new SessionMonitor).
            narrator: Narrator (defaults to one using ANTHROPIC_API_KEY).
        """
        self.config = config or WatchConfig()
        self.registry = registry or WatchRegistry(SessionMonitor(self.config), self.config)
        self.narrator = narrator or Narrator(
            model=self.config.narration_model,
            ttl_seconds=self.config.narration_ttl_seconds,
            window_seconds=self.config.narration_window_seconds,
        )

        self.app = FastAPI(
            title="Swarmview",
            description="Live view of multi-agent coding sessions",
            version=__version__,
            lifespan=self._lifespan,
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self._setup_routes()

        logger.info("Swarmview server initialized")

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        yield
        await self.registry.close()

    async def _list_sessions(self) -> list[dict[str, Any]]:
        sessions = await asyncio.to_thread(list_sessions, self.config.projects_dir)
        return [s.to_dict() for s in deduplicate_sessions(sessions)]

    def _one_shot_snapshot(self, session_path: Path) -> SessionSnapshot:
        # Separate monitor so a watched session's cache is untouched
        monitor = SessionMonitor(self.config)
        return monitor.full_parse(session_path)

    def _setup_routes(self):
        """Setup HTTP and WebSocket routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {
                "status": "ok",
                "timestamp": utc_now().isoformat(),
                "version": __version__,
                "watchedSessions": len(self.registry.watched_sessions()),
            }

        @self.app.get("/api/session")
        async def get_session(path: str | None = Query(default=None)):
            """Parse a session once and return its snapshot."""
            if not path:
                raise HTTPException(status_code=400, detail="Session path is required")
            session_path = normalize_path(path)
            if not session_path.is_file():
                raise HTTPException(status_code=404, detail=f"Session not found: {path}")
            try:
                snapshot = await asyncio.to_thread(self._one_shot_snapshot, session_path)
            except OSError as e:
                logger.error(f"Error loading session {session_path}: {e}")
                raise HTTPException(status_code=500, detail=str(e)) from e
            return {"path": path, **snapshot.to_dict()}

        @self.app.get("/api/sessions")
        async def get_sessions():
            """List the most recent session of every project."""
            return {"sessions": await self._list_sessions()}

        @self.app.post("/api/narrate")
        async def narrate(request: NarrateRequest):
            """Narrate a technical action in plain language."""
            if not request.text:
                raise HTTPException(status_code=400, detail="Text is required")
            narration = await self.narrator.narrate(
                request.text, request.language, request.timestamp
            )
            return {"narration": narration}

        @self.app.websocket("/ws")
        async def session_websocket(websocket: WebSocket):
            """WebSocket endpoint streaming live session snapshots."""
            await websocket.accept()
            logger.info("WebSocket client connected to /ws")
            subscriber = WebSocketSubscriber(websocket)

            try:
                await subscriber.send(
                    {"type": "apiStatus", "keyConfigured": self.narrator.key_configured}
                )
                await subscriber.send({"type": "sessions", "sessions": await self._list_sessions()})

                while True:
                    raw = await websocket.receive_text()
                    try:
                        message = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.debug("Ignoring malformed WebSocket message")
                        continue
                    if not isinstance(message, dict):
                        continue
                    await self._handle_message(subscriber, message)

            except WebSocketDisconnect:
                logger.info("WebSocket client disconnected from /ws")
            except Exception as e:
                logger.error(f"WebSocket error: {e}")
                try:
                    await websocket.close()
                except Exception:
                    pass
            finally:
                await self.registry.unwatch(subscriber)

    async def _handle_message(self, subscriber: WebSocketSubscriber, message: dict[str, Any]) -> None:
        message_type = message.get("type")

        if message_type == "watch":
            await self._handle_watch(subscriber, message.get("path"))
        elif message_type == "unwatch":
            await self.registry.unwatch(subscriber)
            subscriber.session_path = None
        elif message_type == "narrate":
            text = message.get("text") or ""
            narration = await self.narrator.narrate(
                text,
                message.get("language") or DEFAULT_LANGUAGE,
                message.get("timestamp"),
            )
            await subscriber.send({"type": "narrated", "text": text, "narration": narration})
        else:
            logger.debug(f"Ignoring unknown WebSocket message type: {message_type}")

    async def _handle_watch(self, subscriber: WebSocketSubscriber, path: Any) -> None:
        if not isinstance(path, str) or not path:
            await subscriber.send(
                {"type": "watchError", "sessionId": None, "error": "Session path is required"}
            )
            return

        session_path = normalize_path(path)
        subscriber.session_path = session_path
        logger.info(f"Client watching session: {session_path}")

        await subscriber.send(
            {"type": "parseProgress", "phase": "starting", "status": "Starting session analysis..."}
        )
        agent_logs = await asyncio.to_thread(IdentityResolver(session_path).discover)
        await subscriber.send(
            {
                "type": "parseProgress",
                "phase": "agents",
                "current": 0,
                "total": len(agent_logs),
                "status": f"Found {len(agent_logs)} agent files to analyze...",
            }
        )

        try:
            await self.registry.watch(session_path, subscriber)
        except OSError as e:
            logger.error(f"Failed to watch {session_path}: {e}")
            await subscriber.on_error(e)
            return

        await subscriber.send({"type": "parseProgress", "phase": "done", "status": "Analysis complete"})


def create_app(
    config: WatchConfig | None = None,
    registry: WatchRegistry | None = None,
    narrator: Narrator | None = None,
) -> FastAPI:
    """Build the FastAPI application."""
    return DashboardServer(config, registry, narrator).app


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Swarmview dashboard server")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Port")
    parser.add_argument("--projects-dir", help="Directory scanned for session logs")
    parser.add_argument("--log-level", help="Console log level")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the server."""
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    overrides = {
        "host": args.host,
        "port": args.port,
        "projects_dir": args.projects_dir,
        "log_level": args.log_level,
    }
    config.apply_overrides({k: v for k, v in overrides.items() if v is not None})

    LoggingManager(log_dir=config.log_dir, log_level=config.log_level)
    logger.info(f"Starting Swarmview on {config.host}:{config.port}")

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()

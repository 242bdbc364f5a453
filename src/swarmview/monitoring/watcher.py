"""Filesystem watching of sessions and delivery of snapshots to subscribers.

Uses ``watchfiles`` for change notifications, a ChangeCoalescer to batch
them, and SessionMonitor (run off the event loop) to re-derive state.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from watchfiles import Change, awatch

from ..config import WatchConfig
from .agent_log import AGENT_LOG_SUFFIX
from .coalescer import ChangeCoalescer
from .identity import IdentityResolver
from .models import SessionSnapshot
from .session_monitor import SessionMonitor, normalize_path

logger = logging.getLogger(__name__)


class WatchEndedError(RuntimeError):
    """The watch on a session directory ended without being stopped."""


class SessionSubscriber(Protocol):
    """Receiver of snapshots for one watched session.

    Example:
        class PrintSubscriber:
            async def on_snapshot(self, snapshot: SessionSnapshot) -> None:
                print(len(snapshot.agents))

            async def on_error(self, error: Exception) -> None:
                print(f"watch failed: {error}")
    """

    async def on_snapshot(self, snapshot: SessionSnapshot) -> None: ...

    async def on_error(self, error: Exception) -> None: ...


class SessionWatcher:
    """Watches one session's directory and publishes snapshots.

    Attributes:
        session_path: Orchestrator log path.
        monitor: Re-derivation engine (shared; sessions don't share state).
        coalescer: Batches change notifications.
        failed: True once the watch terminated with an error.
    """

    def __init__(
        self,
        session_path: str | Path,
        monitor: SessionMonitor,
        config: WatchConfig | None = None,
    ):
        self.session_path = normalize_path(session_path)
        self.monitor = monitor
        self.config = config or monitor.config
        self.coalescer = ChangeCoalescer(self._rederive, self.config.debounce_seconds)
        self.failed = False
        self._layout = IdentityResolver(self.session_path)
        self._subscribers: list[SessionSubscriber] = []
        self._stop_event: asyncio.Event | None = None
        self._started: asyncio.Event | None = None
        self._early_changes: set[str] = set()
        self._task: asyncio.Task | None = None
        self._last_snapshot: SessionSnapshot | None = None

    @property
    def subscribers(self) -> list[SessionSubscriber]:
        return list(self._subscribers)

    @property
    def last_snapshot(self) -> SessionSnapshot | None:
        return self._last_snapshot

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_subscriber(self, subscriber: SessionSubscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def remove_subscriber(self, subscriber: SessionSubscriber) -> bool:
        try:
            self._subscribers.remove(subscriber)
        except ValueError:
            return False
        return True

    def is_relevant(self, change: Change, file_path: str) -> bool:
        """watchfiles filter: the session log and this session's agent logs."""
        if not file_path.endswith(AGENT_LOG_SUFFIX):
            return False
        path = normalize_path(file_path)
        return path == self.session_path or self._layout.owns(path)

    async def start(self) -> SessionSnapshot:
        """Begin watching, then parse the session and publish the first snapshot.

        Changes seen while the initial parse runs are replayed afterwards.
        """
        if self.is_running:
            raise RuntimeError(f"Already watching {self.session_path}")

        logger.info(f"Watching session: {self.session_path}")
        self._stop_event = asyncio.Event()
        self._started = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        try:
            snapshot = await asyncio.to_thread(self.monitor.full_parse, self.session_path)
        except Exception:
            await self.stop()
            raise
        await self._publish(snapshot)
        self._started.set()
        # Catch up on anything appended while the initial parse ran
        for changed in sorted({str(self.session_path), *self._early_changes}):
            self.coalescer.notify(changed)
        self._early_changes.clear()
        return snapshot

    async def stop(self) -> None:
        """Stop watching and discard the session's cache."""
        if self._stop_event is not None:
            self._stop_event.set()
        await self.coalescer.aclose()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.monitor.discard(self.session_path)
        logger.info(f"Stopped watching session: {self.session_path}")

    async def _watch_loop(self) -> None:
        watch_dir = self.session_path.parent
        try:
            if not watch_dir.is_dir():
                raise FileNotFoundError(f"Session directory not found: {watch_dir}")
            async for changes in awatch(
                watch_dir,
                watch_filter=self.is_relevant,
                stop_event=self._stop_event,
                debounce=50,
                step=50,
                recursive=True,
            ):
                for _change, path_str in changes:
                    if self._started is not None and self._started.is_set():
                        self.coalescer.notify(path_str)
                    else:
                        self._early_changes.add(path_str)
                if not watch_dir.is_dir():
                    raise FileNotFoundError(f"Session directory vanished: {watch_dir}")

            if self._stop_event is not None and not self._stop_event.is_set():
                raise WatchEndedError(f"Watch on {watch_dir} ended unexpectedly")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed = True
            logger.error(f"Watch failed for {self.session_path}: {e}")
            await self.coalescer.aclose()
            if self._started is not None:
                await self._started.wait()
            await self._publish_error(e)

    async def _rederive(self, batch: set[Path]) -> None:
        snapshot = await asyncio.to_thread(self.monitor.apply_changes, self.session_path, batch)
        if snapshot is not None:
            await self._publish(snapshot)

    async def _publish(self, snapshot: SessionSnapshot) -> None:
        self._last_snapshot = snapshot
        for subscriber in list(self._subscribers):
            try:
                await subscriber.on_snapshot(snapshot)
            except Exception as e:
                logger.error(
                    "Subscriber raised exception",
                    extra={"session_path": str(self.session_path), "error": str(e)},
                )

    async def _publish_error(self, error: Exception) -> None:
        for subscriber in list(self._subscribers):
            try:
                await subscriber.on_error(error)
            except Exception as e:
                logger.error(
                    "Subscriber raised exception",
                    extra={"session_path": str(self.session_path), "error": str(e)},
                )


class WatchRegistry:
    """Starts and stops session watches on behalf of subscribers.

    A subscriber watches at most one session. Watching a new session
    unsubscribes it from the previous one; a session whose last subscriber
    leaves is stopped and its cache discarded.
    """

    def __init__(self, monitor: SessionMonitor | None = None, config: WatchConfig | None = None):
        self.config = config or (monitor.config if monitor else WatchConfig())
        self.monitor = monitor or SessionMonitor(self.config)
        self._watchers: dict[Path, SessionWatcher] = {}
        self._subscriptions: dict[SessionSubscriber, Path] = {}
        self._lock = asyncio.Lock()

    def watcher_for(self, session_path: str | Path) -> SessionWatcher | None:
        return self._watchers.get(normalize_path(session_path))

    def watched_sessions(self) -> list[Path]:
        return list(self._watchers)

    async def watch(self, session_path: str | Path, subscriber: SessionSubscriber) -> SessionSnapshot:
        """Subscribe to a session, starting its watcher if needed.

        Returns:
            The snapshot the subscriber starts from.
        """
        async with self._lock:
            await self._unwatch_locked(subscriber)
            path = normalize_path(session_path)

            watcher = self._watchers.get(path)
            if watcher is not None and watcher.last_snapshot is not None and not watcher.failed:
                watcher.add_subscriber(subscriber)
                self._subscriptions[subscriber] = path
                snapshot = watcher.last_snapshot
                await subscriber.on_snapshot(snapshot)
                return snapshot

            if watcher is not None:
                await watcher.stop()
            watcher = SessionWatcher(path, self.monitor, self.config)
            watcher.add_subscriber(subscriber)
            self._watchers[path] = watcher
            self._subscriptions[subscriber] = path
            try:
                return await watcher.start()
            except Exception:
                self._watchers.pop(path, None)
                self._subscriptions.pop(subscriber, None)
                await watcher.stop()
                raise

    async def unwatch(self, subscriber: SessionSubscriber) -> bool:
        """Unsubscribe from the current session, if any."""
        async with self._lock:
            return await self._unwatch_locked(subscriber)

    async def _unwatch_locked(self, subscriber: SessionSubscriber) -> bool:
        path = self._subscriptions.pop(subscriber, None)
        if path is None:
            return False
        watcher = self._watchers.get(path)
        if watcher is not None:
            watcher.remove_subscriber(subscriber)
            if not watcher.subscribers:
                del self._watchers[path]
                await watcher.stop()
        return True

    async def close(self) -> None:
        """Stop every watcher."""
        async with self._lock:
            watchers = list(self._watchers.values())
            self._watchers.clear()
            self._subscriptions.clear()
        for watcher in watchers:
            await watcher.stop()

"""
commerce_gateway.lifecycle

Process lifecycle controller.

Responsibilities:
- Sequence startup: connect the store, then build the app and bind the listener.
- Own the server handle and the process-wide lifecycle state.
- Drain gracefully on SIGTERM/SIGINT; exit immediately on process faults
  (uncaught exceptions, unretrieved task exceptions).

State machine:
    STARTING -> LISTENING -> SHUTTING_DOWN -> TERMINATED
    STARTING | LISTENING | SHUTTING_DOWN -> CRASHED -> TERMINATED
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import os
import signal
import sys
import threading
from collections.abc import Awaitable, Callable, Generator, Sequence
from types import TracebackType
from typing import Any

import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from commerce_gateway.api.app import create_app
from commerce_gateway.db.session import connect_store
from commerce_gateway.observability.logging import get_logger
from commerce_gateway.settings import Settings

log = get_logger(__name__)

SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT)


class LifecycleState(enum.StrEnum):
    starting = "STARTING"
    listening = "LISTENING"
    shutting_down = "SHUTTING_DOWN"
    crashed = "CRASHED"
    terminated = "TERMINATED"


_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.starting: frozenset({LifecycleState.listening, LifecycleState.crashed}),
    LifecycleState.listening: frozenset({LifecycleState.shutting_down, LifecycleState.crashed}),
    LifecycleState.shutting_down: frozenset({LifecycleState.terminated, LifecycleState.crashed}),
    LifecycleState.crashed: frozenset({LifecycleState.terminated}),
    LifecycleState.terminated: frozenset(),
}


class LifecycleServer(uvicorn.Server):
    """
    uvicorn server that leaves signal handling to `ProcessLifecycle` and
    reports when its sockets are bound.
    """

    def __init__(self, config: uvicorn.Config, *, on_listening: Callable[[], None]) -> None:
        super().__init__(config)
        self._on_listening = on_listening

    @contextlib.contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        yield

    def install_signal_handlers(self) -> None:
        # Older uvicorn releases install handlers here instead of capture_signals.
        pass

    async def startup(self, sockets: list[Any] | None = None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self._on_listening()


ServerFactory = Callable[[uvicorn.Config, Callable[[], None]], uvicorn.Server]


def _default_server_factory(config: uvicorn.Config, on_listening: Callable[[], None]) -> uvicorn.Server:
    return LifecycleServer(config, on_listening=on_listening)


class ProcessLifecycle:
    def __init__(
        self,
        *,
        settings: Settings,
        app_factory: Callable[..., FastAPI] = create_app,
        connect: Callable[[Settings], Awaitable[AsyncEngine]] = connect_store,
        server_factory: ServerFactory = _default_server_factory,
        exit_process: Callable[[int], Any] = os._exit,
        signals: Sequence[signal.Signals] = SHUTDOWN_SIGNALS,
    ) -> None:
        self._settings = settings
        self._app_factory = app_factory
        self._connect = connect
        self._server_factory = server_factory
        self._exit = exit_process
        self._signals = tuple(signals)
        # Signal callbacks, loop callbacks and excepthooks may race; transitions are CAS.
        self._lock = threading.Lock()
        self._state = LifecycleState.starting
        self._loop: asyncio.AbstractEventLoop | None = None
        self._server: uvicorn.Server | None = None
        self._engine: AsyncEngine | None = None

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def server(self) -> uvicorn.Server | None:
        return self._server

    @property
    def bound_port(self) -> int | None:
        servers = getattr(self._server, "servers", None)
        if not servers or not servers[0].sockets:
            return None
        return servers[0].sockets[0].getsockname()[1]

    def _transition(self, target: LifecycleState, *, source: LifecycleState | None = None) -> bool:
        with self._lock:
            if source is not None and self._state is not source:
                return False
            if target not in _TRANSITIONS[self._state]:
                return False
            previous, self._state = self._state, target
        log.debug("lifecycle_transition", previous=previous.value, state=target.value)
        return True

    async def run(self) -> int:
        """
        Run the process until shutdown. Returns the exit status: 0 after a
        graceful drain, 1 if startup failed.
        """

        loop = asyncio.get_running_loop()
        self._loop = loop
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(self._handle_loop_exception)
        try:
            return await self._run()
        finally:
            for sig in self._signals:
                with contextlib.suppress(NotImplementedError, ValueError, RuntimeError):
                    loop.remove_signal_handler(sig)
            loop.set_exception_handler(previous_handler)

    async def _run(self) -> int:
        settings = self._settings
        log.info("startup", env=settings.env, host=settings.host, port=settings.port)
        try:
            self._engine = await self._connect(settings)
        except Exception as e:
            log.error("startup_failed", error=f"{type(e).__name__}: {e}")
            self._transition(LifecycleState.crashed)
            self._transition(LifecycleState.terminated)
            return 1

        try:
            app = self._app_factory(settings=settings, engine=self._engine)
            config = uvicorn.Config(
                app,
                host=settings.host,
                port=settings.port,
                log_config=None,  # structlog
                lifespan="on",
                timeout_graceful_shutdown=settings.shutdown_timeout,
            )
            self._server = self._server_factory(config, self._on_listening)
            try:
                await self._server.serve()
            except SystemExit:
                # uvicorn exits this way when it cannot bind.
                log.error("listen_failed", host=settings.host, port=settings.port)
        finally:
            await self._engine.dispose()

        if self._transition(LifecycleState.terminated, source=LifecycleState.shutting_down):
            log.info("shutdown")
            return 0
        # serve() returned without a shutdown request.
        self._transition(LifecycleState.crashed)
        self._transition(LifecycleState.terminated)
        return 1

    def _on_listening(self) -> None:
        if not self._transition(LifecycleState.listening):
            return
        loop = self._loop or asyncio.get_running_loop()
        for sig in self._signals:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except (NotImplementedError, RuntimeError):
                log.warning("signal_handler_unavailable", signal=sig.name)
        log.info("listening", host=self._settings.host, port=self.bound_port)

    def request_shutdown(self, sig: signal.Signals | None = None) -> None:
        """
        Stop accepting connections and let in-flight requests finish. Only
        acts once, and only from LISTENING.
        """

        if not self._transition(LifecycleState.shutting_down):
            return
        log.info("shutdown_requested", signal=sig.name if sig is not None else None)
        if self._server is not None:
            self._server.should_exit = True

    def crash(self, exc: BaseException, *, source: str) -> None:
        """
        Record a process fault and exit at once with status 1. No drain: the
        process state is no longer trusted.
        """

        if not self._transition(LifecycleState.crashed):
            return
        log.error("crash", source=source, error=f"{type(exc).__name__}: {exc}")
        self._exit(1)

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            loop.default_exception_handler(context)
            return
        self.crash(exc, source="unhandled_task")

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        self.crash(exc, source="uncaught")

    def _threading_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_value is not None:
            self.crash(args.exc_value, source=f"thread:{getattr(args.thread, 'name', '?')}")

    def install_crash_handlers(self) -> None:
        sys.excepthook = self._excepthook
        threading.excepthook = self._threading_excepthook


# --- Module Notes -----------------------------------------------------------
# Nothing outside this module mutates the lifecycle state; route groups and stages
# never see it.

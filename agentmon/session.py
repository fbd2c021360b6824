import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional, Set, Union

from agentmon.buffer import AppendListener
from agentmon.config import DEFAULT_ENDPOINT
from agentmon.errors import PreconditionError
from agentmon.model.level import DEFAULT_LEVEL, Level
from agentmon.model.params import MonitorParams, RetryPolicy
from agentmon.model.target import Target, is_target
from agentmon.stream import AuthorizedFetch, Direction, ErrorListener, LogStreamController

LevelChangeHandler = Callable[[Level], Any]


def delimiter(message: str, tail: str) -> str:
    "Separates the text of two controllers, always starting on a line of its own"

    newline = "" if tail.endswith("\n") else "\n"
    return f"{newline}...{message}...\n\n"


def transition_marker(level: Level, tail: str) -> str:
    return delimiter(f"changing log level to {level}", tail)


def reconnect_marker(streaming: bool, tail: str) -> str:
    mode = "streaming" if streaming else "paged"
    return delimiter(f"reconnecting in {mode} mode", tail)


class MonitorSession:
    """
    Holds what the user selected (target, level, mode) and replaces the log
    stream controller whenever the selection changes. All methods must be
    called on the thread running the event loop.
    """

    def __init__(
        self,
        *,
        fetch: AuthorizedFetch,
        endpoint: str = DEFAULT_ENDPOINT,
        on_level_change: Optional[LevelChangeHandler] = None,
        policy: Optional[RetryPolicy] = None,
        logger=None,
    ) -> None:
        self.fetch = fetch
        self.endpoint = endpoint
        self.on_level_change = on_level_change
        self.policy = policy or RetryPolicy()
        self.logger = logger or logging.getLogger("session")

        self.target: Optional[Target] = None
        self.level = DEFAULT_LEVEL
        self.streaming = True
        # where paged controllers start reading the remote log
        self.offset = 0

        self.controller: Optional[LogStreamController] = None
        self.attached = False

        # carried over from one controller to the next
        self.append_listeners: List[AppendListener] = []
        self.error_listeners: List[ErrorListener] = []

        # coroutine level change handlers that are still running
        self.handler_tasks: Set["asyncio.Future"] = set()

    def __repr__(self) -> str:
        return "<%s target=%r, level=%s, streaming=%r>" % (
            self.__class__.__name__,
            self.target,
            self.level,
            self.streaming,
        )
    # Selection

    def configure(
        self,
        target: Target,
        level: Union[Level, str] = DEFAULT_LEVEL,
        streaming: bool = True,
        offset: int = 0,
    ) -> MonitorParams:
        if not is_target(target):
            raise PreconditionError(
                "Provide a client OR a server to monitor, got %r" % (target,)
            )

        if offset < 0:
            raise PreconditionError("offset must be >= 0, got %r" % offset)

        if not isinstance(level, Level):
            level = Level.parse(level)

        self.target = target
        self.level = level
        self.streaming = streaming
        self.offset = offset

        return self.params

    @property
    def params(self) -> MonitorParams:
        if self.target is None:
            raise PreconditionError("No target configured")

        return MonitorParams(target=self.target, level=self.level)

    # Controller lifecycle

    def create_controller(self, seed: str) -> LogStreamController:
        controller = LogStreamController(
            fetch=self.fetch,
            endpoint=self.endpoint,
            params=self.params,
            seed=seed,
            streaming=self.streaming,
            policy=self.policy,
            offset=self.offset,
        )

        for listener in self.append_listeners:
            controller.on_append(listener)

        for err_listener in self.error_listeners:
            controller.on_error(err_listener)

        return controller

    def require_controller(self) -> LogStreamController:
        if not self.attached or self.controller is None:
            raise PreconditionError("Session is not attached")

        return self.controller

    def replace_controller(
        self, old: LogStreamController, make_marker: Callable[[str], str]
    ) -> LogStreamController:
        # drop our reference first, a transport that ignored cancellation can
        # no longer write into a buffer the new controller is built from
        self.controller = None
        tail = old.current_buffer()
        marker = make_marker(tail) if tail else ""

        self.controller = self.create_controller(seed=tail + marker)

        # the marker is part of the seed, listeners only see appends
        if marker:
            for listener in self.append_listeners:
                self.call_listener(listener, marker)

        return self.controller

    def attach(self) -> LogStreamController:
        if self.attached:
            raise PreconditionError("Session is already attached")

        # fail before any connection is attempted
        params = self.params

        self.logger.info(
            "Attaching to %s at level %s (%s)",
            self.target.pretty(),  # type: ignore
            params.log_level,
            "streaming" if self.streaming else "paged",
        )

        self.attached = True
        self.controller = self.create_controller(seed="")
        return self.controller

    def change_level(self, level: Union[Level, str]) -> LogStreamController:
        old = self.require_controller()

        if not isinstance(level, Level):
            level = Level.parse(level)

        old.stop()
        self.level = level
        self.notify_level_change(level)

        self.logger.info("Changing log level of %s to %s", self.target.pretty(), level)  # type: ignore

        return self.replace_controller(old, lambda tail: transition_marker(level, tail))

    def reconnect(self) -> LogStreamController:
        "Replaces the controller without changing the level, picking up a toggled mode"

        old = self.require_controller()
        old.stop()

        self.logger.info(
            "Reconnecting to %s (%s)",
            self.target.pretty(),  # type: ignore
            "streaming" if self.streaming else "paged",
        )

        streaming = self.streaming
        return self.replace_controller(old, lambda tail: reconnect_marker(streaming, tail))

    def toggle_mode(self) -> bool:
        # only affects the next controller
        self.streaming = not self.streaming
        return self.streaming

    def detach(self) -> None:
        if self.controller is not None:
            self.controller.stop()

    # Consumer surface

    def current_buffer(self) -> str:
        if self.controller is None:
            return ""

        return self.controller.current_buffer()

    def on_append(self, listener: AppendListener) -> None:
        self.append_listeners.append(listener)

        if self.controller is not None:
            self.controller.on_append(listener)

    def on_error(self, listener: ErrorListener) -> None:
        self.error_listeners.append(listener)

        if self.controller is not None:
            self.controller.on_error(listener)

    async def load_more(
        self, direction: Union[Direction, str] = Direction.NEXT, limit: Optional[int] = None
    ) -> str:
        if self.controller is None:
            raise PreconditionError("Session is not attached")

        return await self.controller.load_more(direction, limit)

    # Notifications

    def call_listener(self, listener: AppendListener, text: str) -> None:
        try:
            listener(text)
        except Exception:
            self.logger.exception("Append listener %r failed", listener)

    def notify_level_change(self, level: Level) -> None:
        if self.on_level_change is None:
            return

        # fire and forget, we never wait on the handler
        loop = asyncio.get_running_loop()
        loop.call_soon(self.dispatch_level_change, level)

    def dispatch_level_change(self, level: Level) -> None:
        assert self.on_level_change is not None  # help mypy

        try:
            result = self.on_level_change(level)
        except Exception:
            self.logger.exception("Level change handler failed")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            # the loop only keeps a weak reference to its tasks
            self.handler_tasks.add(task)
            task.add_done_callback(self.handler_done)

    def handler_done(self, task: "asyncio.Future") -> None:
        self.handler_tasks.discard(task)

        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            self.logger.error("Level change handler failed: %r", exc)

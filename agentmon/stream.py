import asyncio
import codecs
import enum
import inspect
import logging
from threading import RLock
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Union,
)

from agentmon.buffer import AppendListener, LogBuffer
from agentmon.errors import (
    AuthorizationError,
    NetworkError,
    PreconditionError,
    ProtocolError,
    RetryExhausted,
)
from agentmon.frames import new_text_decoder
from agentmon.model.params import MonitorParams, RangeParams, RetryPolicy
from agentmon.tools.logs import CtxLogger

Chunk = Union[str, bytes]
FetchResult = Union[AsyncIterator[Chunk], Awaitable[AsyncIterator[Chunk]]]

# performs an authenticated GET of url?params and yields the response body
AuthorizedFetch = Callable[[str, Mapping[str, str]], FetchResult]

ErrorListener = Callable[[Exception], None]


class State(enum.Enum):
    IDLE = 1
    ACTIVE = 2
    STOPPED = 3


class Direction(enum.Enum):
    NEXT = "next"
    PREV = "prev"


class LogStreamController:
    """
    Owns exactly one subscription to the monitor endpoint and the buffer it
    fills. In streaming mode a background task is started on construction, so
    the controller must be created on the running event loop. A stopped
    controller is never restarted: construct a new one, seeded with the text of
    the old one.
    """

    def __init__(
        self,
        *,
        fetch: AuthorizedFetch,
        endpoint: str,
        params: MonitorParams,
        seed: str = "",
        streaming: bool = True,
        policy: Optional[RetryPolicy] = None,
        offset: int = 0,
        logger=None,
    ) -> None:
        self.fetch = fetch
        self.endpoint = endpoint
        self.params = params
        self.streaming = streaming
        self.policy = policy or RetryPolicy()
        self.logger = logger or logging.getLogger("stream")

        self.log = CtxLogger(
            logger=self.logger,
            extra={"target": "%s/%s" % (params.target_kind, params.target_id)},
            prefix="[%(target)s] ",
        )

        self.buffer = LogBuffer(seed=seed)

        # guards state transitions against appends. All methods, stop() included,
        # must run on the loop thread, only the buffer may be read elsewhere
        self.lock = RLock()
        self.state = State.IDLE
        self.error: Optional[Exception] = None
        self.error_listeners: List[ErrorListener] = []

        self.task: Optional[asyncio.Task] = None
        # chunks received on the current connection
        self.received = 0

        # paged mode: the span of the remote log that is loaded into the buffer
        self.head_offset = offset
        self.tail_offset = offset
        self.range_locks: Dict[Direction, asyncio.Lock] = {
            Direction.NEXT: asyncio.Lock(),
            Direction.PREV: asyncio.Lock(),
        }

        if self.streaming:
            loop = asyncio.get_running_loop()
            self.state = State.ACTIVE
            self.task = loop.create_task(self.stream())

    def __repr__(self) -> str:
        return "<%s params=%r, state=%s, streaming=%r, buffer=%r>" % (
            self.__class__.__name__,
            self.params,
            self.state.name,
            self.streaming,
            self.buffer,
        )

    # Consumer surface

    @property
    def is_streaming(self) -> bool:
        return self.streaming

    @property
    def is_stopped(self) -> bool:
        return self.state is State.STOPPED

    def current_buffer(self) -> str:
        return self.buffer.text

    def on_append(self, listener: AppendListener) -> Callable[[], None]:
        return self.buffer.on_append(listener)

    def on_error(self, listener: ErrorListener) -> None:
        self.error_listeners.append(listener)

    async def wait_stopped(self) -> None:
        if self.task is not None:
            await asyncio.wait([self.task])

    # Lifecycle

    def stop(self) -> None:
        with self.lock:
            if self.state is State.STOPPED:
                return

            self.state = State.STOPPED

        self.log.info("Stopping log stream")

        if self.task is not None and not self.task.done():
            self.task.cancel()

    def finish(self, error: Optional[Exception] = None) -> None:
        with self.lock:
            if self.state is State.STOPPED:
                return

            self.state = State.STOPPED
            self.error = error

        if error is None:
            return

        for listener in self.error_listeners[:]:
            try:
                listener(error)
            except Exception:
                self.log.exception("Error listener %r failed", listener)

    def write(self, text: str, prepend: bool = False) -> bool:
        with self.lock:
            # a chunk that raced with stop() is dropped
            if self.state is State.STOPPED:
                return False

            if not text:
                return True

            if prepend:
                self.buffer.prepend(text)
            else:
                self.buffer.append(text)

        return True

    def to_text(self, chunk: Any, decoder: codecs.IncrementalDecoder) -> str:
        if isinstance(chunk, str):
            return chunk

        if isinstance(chunk, (bytes, bytearray)):
            return decoder.decode(bytes(chunk))

        raise ProtocolError("Expected a text chunk, got %r" % type(chunk).__name__)

    # Transport

    async def open(self, query: Mapping[str, str]) -> AsyncIterator[Chunk]:
        result = self.fetch(self.endpoint, query)
        if inspect.isawaitable(result):
            result = await result

        return result  # type: ignore

    async def close(self, stream: Any) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    # Streaming mode

    async def stream_attempt(self) -> None:
        query = self.params.to_query()
        self.received = 0

        self.log.info("Streaming logs from %s", self.endpoint)
        stream = await self.open(query)
        decoder = new_text_decoder()

        try:
            async for chunk in stream:
                if not self.write(self.to_text(chunk, decoder)):
                    self.log.debug("Discarding chunk received after stop")
                    break

                self.received += 1

            else:
                self.write(decoder.decode(b"", final=True))

        finally:
            await self.close(stream)

    async def stream(self) -> None:
        delays = self.policy.delays()
        attempts = 0

        while not self.is_stopped:
            try:
                await self.stream_attempt()

                self.log.info("Log stream completed")
                self.finish()
                return

            except NetworkError as exc:
                if self.received:
                    # we got data through so the connection was healthy
                    delays = self.policy.delays()
                    attempts = 0

                attempts += 1
                delay = next(delays, None)

                if delay is None:
                    self.log.error(
                        "Log stream failed %s times in a row - giving up: %r",
                        attempts,
                        exc,
                    )
                    self.finish(RetryExhausted(attempts=attempts, last_error=exc))
                    return

                self.log.warning(
                    "Log stream failed with retryable error: %r - reconnecting in %.2fs",
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)

            except (AuthorizationError, ProtocolError) as exc:
                self.log.error(
                    "Log stream failed with non-retryable error - giving up: %r", exc
                )
                self.finish(exc)
                return

            except Exception as exc:
                # we don't know what the error is so log a traceback and exit
                self.log.exception("Log stream failed with unexpected error - giving up")
                self.finish(exc)
                return

    # Paged mode

    async def fetch_payload(self, query: Mapping[str, str]) -> str:
        stream = await self.open(query)
        decoder = new_text_decoder()
        parts = []

        try:
            async for chunk in stream:
                parts.append(self.to_text(chunk, decoder))

            parts.append(decoder.decode(b"", final=True))
        finally:
            await self.close(stream)

        return "".join(parts)

    async def fetch_range(self, rng: RangeParams) -> str:
        query = dict(self.params.to_query())
        query.update(rng.to_query())

        attempt = 0
        while True:
            attempt += 1

            try:
                self.log.info("Fetching %r from %s", rng, self.endpoint)
                return await self.fetch_payload(query)

            except NetworkError as exc:
                delay = self.policy.page_delay(attempt)
                if delay is None:
                    self.log.error(
                        "Fetching %r failed %s times - giving up: %r", rng, attempt, exc
                    )
                    raise RetryExhausted(attempts=attempt, last_error=exc) from exc

                self.log.warning(
                    "Fetching %r failed with retryable error: %r - retrying", rng, exc
                )
                await asyncio.sleep(delay)

    async def load_more(
        self, direction: Union[Direction, str] = Direction.NEXT, limit: Optional[int] = None
    ) -> str:
        if self.streaming:
            raise PreconditionError("Loading ranges is only possible in paged mode")

        direction = Direction(direction)
        limit = limit or self.policy.page_size

        async with self.range_locks[direction]:
            if self.is_stopped:
                raise PreconditionError("Cannot load from a stopped log stream")

            with self.lock:
                if self.state is State.IDLE:
                    self.state = State.ACTIVE

            if direction is Direction.NEXT:
                rng = RangeParams(offset=self.tail_offset, limit=limit)
            else:
                if self.head_offset == 0:
                    return ""

                start = max(0, self.head_offset - limit)
                rng = RangeParams(offset=start, limit=self.head_offset - start)

            try:
                text = await self.fetch_range(rng)

            except AuthorizationError as exc:
                self.log.error("Fetching %r was not authorized - giving up: %r", rng, exc)
                self.finish(exc)
                raise

            if not self.write(text, prepend=direction is Direction.PREV):
                self.log.debug("Discarding %r received after stop", rng)
                return ""

            if direction is Direction.NEXT:
                self.tail_offset = rng.offset + len(text)
            else:
                self.head_offset = rng.offset

            return text

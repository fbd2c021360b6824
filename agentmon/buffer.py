import logging
from threading import Lock
from typing import Callable, List

AppendListener = Callable[[str], None]


class LogBuffer:
    """
    The text received for one controller epoch, kept as an ordered list of
    chunks. The stream task is the only writer; any number of threads may read
    snapshots or subscribe to growth. Listeners run on the writer's thread,
    after the lock has been released, so they may read the buffer themselves.
    """

    def __init__(self, seed: str = "", logger=None) -> None:
        self.logger = logger or logging.getLogger("buffer")

        self.lock = Lock()
        self.chunks: List[str] = [seed] if seed else []
        self.length = len(seed)

        self.listeners: List[AppendListener] = []

    def __repr__(self) -> str:
        return "<%s chunks=%s, length=%s>" % (
            self.__class__.__name__,
            len(self.chunks),
            self.length,
        )

    def __len__(self) -> int:
        return self.length

    @property
    def text(self) -> str:
        with self.lock:
            # collapse so repeated snapshots stay cheap
            if len(self.chunks) > 1:
                self.chunks = ["".join(self.chunks)]

            return self.chunks[0] if self.chunks else ""

    def append(self, chunk: str) -> None:
        if not chunk:
            return

        with self.lock:
            self.chunks.append(chunk)
            self.length += len(chunk)

        self.notify(chunk)

    def prepend(self, chunk: str) -> None:
        "Only used for scrollback in paged mode, listeners are not notified"

        if not chunk:
            return

        with self.lock:
            self.chunks.insert(0, chunk)
            self.length += len(chunk)

    def on_append(self, listener: AppendListener) -> Callable[[], None]:
        with self.lock:
            self.listeners.append(listener)

        def unsubscribe() -> None:
            with self.lock:
                if listener in self.listeners:
                    self.listeners.remove(listener)

        return unsubscribe

    def notify(self, chunk: str) -> None:
        with self.lock:
            listeners = self.listeners[:]

        for listener in listeners:
            try:
                listener(chunk)
            except Exception:
                self.logger.exception("Append listener %r failed", listener)

from queue import Empty, Queue
from typing import Generic, Optional, TypeVar

from agentmon.events import LogEvent

T = TypeVar("T")


class ChanSender(Generic[T]):
    def __init__(self, queue: Queue) -> None:
        self.queue = queue

    def send(self, obj: T) -> None:
        self.queue.put_nowait(obj)


class ChanReceiver(Generic[T]):
    def __init__(self, queue: Queue) -> None:
        self.queue = queue

    def recv(self, timeout: Optional[float] = None) -> Optional[T]:
        try:
            return self.queue.get(timeout=timeout)
        except Empty:
            return None

    def recv_nowait(self) -> Optional[T]:
        try:
            return self.queue.get_nowait()
        except Empty:
            pass

        return None


LEvSender = ChanSender[LogEvent]
LEvReceiver = ChanReceiver[LogEvent]


class LEvChan:
    def __init__(self, sender: LEvSender, receiver: LEvReceiver) -> None:
        self.sender = sender
        self.receiver = receiver


def create_lev_chan() -> LEvChan:
    queue: Queue = Queue()
    sender = LEvSender(queue)
    receiver = LEvReceiver(queue)
    return LEvChan(sender=sender, receiver=receiver)

import asyncio
from typing import Any, Dict, List, Mapping, Tuple


class Sleep:
    def __init__(self, seconds: float) -> None:
        self.seconds = seconds


# keeps the connection open without sending anything
HANG = object()


class FakeTransport:
    """
    A scripted authorized-fetch capability. Every call consumes the next
    script; a script is a list of chunks to yield, exceptions to raise,
    Sleep/asyncio.Event items to wait on, or HANG.
    """

    def __init__(self, *scripts: List[Any]) -> None:
        self.scripts = list(scripts)
        self.calls: List[Tuple[str, Dict[str, str]]] = []
        self.closed = 0

    def __call__(self, url: str, params: Mapping[str, str]):
        self.calls.append((url, dict(params)))
        script = self.scripts.pop(0) if self.scripts else [HANG]
        return self.play(script)

    async def play(self, script: List[Any]):
        try:
            for item in script:
                if item is HANG:
                    await asyncio.Event().wait()
                elif isinstance(item, Sleep):
                    await asyncio.sleep(item.seconds)
                elif isinstance(item, asyncio.Event):
                    await item.wait()
                elif isinstance(item, Exception):
                    raise item
                else:
                    yield item
        finally:
            self.closed += 1


async def eventually(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within %ss" % timeout)

        await asyncio.sleep(0.001)



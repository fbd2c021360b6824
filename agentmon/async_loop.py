import asyncio
import logging
from asyncio import AbstractEventLoop, Event as AsyncEvent
from threading import Event, Thread
from typing import Any, Dict, Optional

import aiohttp

from agentmon.client import AsyncClient
from agentmon.config import Agent


class AsyncAgentLoop:
    """Owns the http session and the client for a single agent."""

    def __init__(self, *, agent: Agent, logger=None) -> None:
        self.agent = agent
        self.logger = logger or logging.getLogger("agent_loop")

        self.initialized_event = AsyncEvent()
        self.closing_event = AsyncEvent()
        self.client: Optional[AsyncClient] = None

    async def wait_until_initialized(self) -> None:
        await self.initialized_event.wait()

    async def get_client(self) -> AsyncClient:
        if self.client is None:
            raise RuntimeError("Have no client yet")

        return self.client

    async def close(self) -> None:
        self.closing_event.set()

    async def mainloop(self) -> None:
        async with aiohttp.ClientSession() as session:
            self.client = AsyncClient(session=session, agent=self.agent)

            # once we have a client we announce we are ready for use
            self.initialized_event.set()

            await self.closing_event.wait()
            self.logger.info("[%s] Closing http session", self.agent.short_name)


class AsyncLoop:
    def __init__(self, *, loop: AbstractEventLoop, initialized_event: Event, logger=None) -> None:
        self.loop = loop
        self.initialized_event = initialized_event
        self.logger = logger or logging.getLogger("async_loop")

        self.agent_loops: Dict[str, AsyncAgentLoop] = {}
        self.shutdown_event: Optional[AsyncEvent] = None
        self.thread: Optional[Thread] = None

    async def get_agent_loop(self, agent: Agent) -> AsyncAgentLoop:
        agent_loop = self.agent_loops.get(agent.name)

        if agent_loop is None:
            agent_loop = AsyncAgentLoop(agent=agent)
            self.agent_loops[agent.name] = agent_loop

            self.loop.create_task(agent_loop.mainloop())
            await agent_loop.wait_until_initialized()

        return agent_loop

    async def mainloop(self) -> None:
        self.shutdown_event = AsyncEvent()

        # tell the world we are up and running
        self.initialized_event.set()

        await self.shutdown_event.wait()

        for agent_loop in self.agent_loops.values():
            await agent_loop.close()

        # let the agent loops close their sessions
        tasks = [
            task
            for task in asyncio.all_tasks(self.loop)
            if task is not asyncio.current_task()
        ]
        if tasks:
            await asyncio.wait(tasks, timeout=5)

    # Helpers to facilitate running tasks on the async loop from another thread

    def get_loop(self) -> AbstractEventLoop:
        return self.loop

    def launch_coro(self, coro) -> None:
        asyncio.run_coroutine_threadsafe(coro, self.loop)

    def run_coro_until_completion(self, coro, timeout: Optional[float] = None) -> Any:
        fut = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return fut.result(timeout=timeout)

    def call_soon(self, func, *args) -> None:
        self.loop.call_soon_threadsafe(func, *args)

    def shutdown(self) -> None:
        if self.shutdown_event is not None:
            self.loop.call_soon_threadsafe(self.shutdown_event.set)

        if self.thread is not None:
            self.thread.join(timeout=10)


def launch_in_background_thread() -> AsyncLoop:
    loop = asyncio.new_event_loop()

    initialized_event = Event()
    async_loop = AsyncLoop(loop=loop, initialized_event=initialized_event)

    thread = Thread(
        target=loop.run_until_complete,
        args=[async_loop.mainloop()],
        name="AsyncLoop",
        daemon=True,
    )
    async_loop.thread = thread
    thread.start()

    # wait until the loop has started running on a separate thread and is ready
    # to be used
    initialized_event.wait()

    return async_loop

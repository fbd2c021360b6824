import logging
from typing import Optional, Union

from agentmon.async_loop import AsyncLoop
from agentmon.channels import LEvReceiver, LEvSender, create_lev_chan
from agentmon.config import Agent, MonitorSettings
from agentmon.events import Action, LogEvent
from agentmon.model.level import Level
from agentmon.model.target import Target
from agentmon.session import MonitorSession
from agentmon.stream import Direction


class MonitorHandle:
    """
    Lets a thread other than the loop thread drive a session. Every call is
    shipped to the loop and waited for.
    """

    def __init__(
        self,
        *,
        async_loop: AsyncLoop,
        session: MonitorSession,
        receiver: LEvReceiver,
    ) -> None:
        self.async_loop = async_loop
        self.session = session
        self.receiver = receiver

    def __repr__(self) -> str:
        return "<%s session=%r>" % (self.__class__.__name__, self.session)

    @property
    def level(self) -> Level:
        return self.session.level

    @property
    def is_streaming(self) -> bool:
        return self.session.streaming

    def change_level(self, level: Union[Level, str]) -> None:
        async def change_level():
            self.session.change_level(level)

        self.async_loop.run_coro_until_completion(change_level())

    def toggle_mode(self) -> bool:
        async def toggle_mode():
            return self.session.toggle_mode()

        return self.async_loop.run_coro_until_completion(toggle_mode())

    def reconnect(self) -> None:
        "Replaces the controller so that a toggled mode takes effect"

        async def reconnect():
            self.session.reconnect()

        self.async_loop.run_coro_until_completion(reconnect())

    def load_more(
        self, direction: Union[Direction, str] = Direction.NEXT, limit: Optional[int] = None
    ) -> str:
        return self.async_loop.run_coro_until_completion(
            self.session.load_more(direction, limit)
        )

    def snapshot(self) -> str:
        # the buffer is safe to read from any thread
        return self.session.current_buffer()

    def close(self) -> None:
        async def detach():
            self.session.detach()

        self.async_loop.run_coro_until_completion(detach())


class SyncMonitorFacade:
    def __init__(
        self,
        *,
        async_loop: AsyncLoop,
        agent: Agent,
        settings: Optional[MonitorSettings] = None,
        logger=None,
    ) -> None:
        self.async_loop = async_loop
        self.agent = agent
        self.settings = settings or MonitorSettings()
        self.logger = logger or logging.getLogger("facade")

    def wire_events(self, session: MonitorSession, target: Target, sender: LEvSender) -> None:
        def on_append(text: str) -> None:
            sender.send(LogEvent(target=target, action=Action.APPENDED, object=text))

        def on_error(exc: Exception) -> None:
            sender.send(LogEvent(target=target, action=Action.ERROR, object=exc))

        session.on_append(on_append)
        session.on_error(on_error)

    def open_session(
        self,
        *,
        target: Target,
        level: Union[Level, str],
        streaming: bool = True,
        offset: int = 0,
    ) -> MonitorHandle:
        lev_chan = create_lev_chan()

        def on_level_change(new_level: Level) -> None:
            event = LogEvent(target=target, action=Action.LEVEL_CHANGED, object=new_level)
            lev_chan.sender.send(event)

        async def open_session():
            agent_loop = await self.async_loop.get_agent_loop(self.agent)
            client = await agent_loop.get_client()

            session = MonitorSession(
                fetch=client.request,
                endpoint=self.settings.endpoint,
                on_level_change=on_level_change,
                policy=self.settings.policy,
            )
            session.configure(target, level=level, streaming=streaming, offset=offset)
            self.wire_events(session, target, lev_chan.sender)
            session.attach()
            return session

        session = self.async_loop.run_coro_until_completion(open_session())

        return MonitorHandle(
            async_loop=self.async_loop,
            session=session,
            receiver=lev_chan.receiver,
        )

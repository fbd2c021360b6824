import pytest

from agentmon.async_loop import launch_in_background_thread
from agentmon.config import Agent, MonitorSettings
from agentmon.events import Action
from agentmon.facade import SyncMonitorFacade
from agentmon.model.level import Level
from agentmon.model.params import RetryPolicy
from agentmon.model.target import ServerTarget
from agentmon.stream import Direction
from tests.agent_app import AgentApp


def collect_until(receiver, predicate, timeout=5.0):
    events = []

    while True:
        event = receiver.recv(timeout=timeout)
        assert event is not None, "timed out waiting for events: %r" % events

        events.append(event)
        if predicate(event):
            return events


@pytest.fixture
def background():
    async_loop = launch_in_background_thread()
    app = AgentApp(follow=True)

    server = async_loop.run_coro_until_completion(app.start())
    agent = Agent(name="local", address=str(server.make_url("/")))

    yield async_loop, app, agent

    async_loop.run_coro_until_completion(server.close())
    async_loop.shutdown()


def test_stream_and_change_level(background):
    async_loop, app, agent = background
    facade = SyncMonitorFacade(
        async_loop=async_loop,
        agent=agent,
        settings=MonitorSettings(policy=RetryPolicy(initial_delay_s=0)),
    )

    handle = facade.open_session(target=ServerTarget("srv-1"), level="info")
    collect_until(handle.receiver, lambda ev: "line two" in str(ev.object))

    handle.change_level(Level.DEBUG)
    events = collect_until(handle.receiver, lambda ev: "[DEBUG] agent: line two" in str(ev.object))
    actions = [ev.action for ev in events]

    assert Action.LEVEL_CHANGED in actions
    assert handle.level is Level.DEBUG

    text = handle.snapshot()
    assert text.startswith("[INFO] agent: line one\n[INFO] agent: line two\n")
    assert "...changing log level to debug...\n\n[DEBUG] agent: line one\n" in text

    assert [req["query"]["log_level"] for req in app.requests] == ["info", "debug"]

    handle.close()


def test_mode_toggle_and_paged_load(background):
    async_loop, app, agent = background
    facade = SyncMonitorFacade(async_loop=async_loop, agent=agent)

    handle = facade.open_session(target=ServerTarget("srv-1"), level=Level.INFO, streaming=False)

    assert handle.is_streaming is False
    assert handle.snapshot() == ""

    # a paged fetch reads until the agent ends the response
    app.follow = False
    text = handle.load_more()

    assert text == "[INFO] agent: line one\n[INFO] agent: line two\n"
    assert app.requests[0]["query"]["offset"] == "0"

    assert handle.toggle_mode() is True
    handle.reconnect()

    text = handle.snapshot()
    assert "...reconnecting in streaming mode...\n\n" in text
    assert "changing log level" not in text
    assert handle.level is Level.INFO

    handle.close()


def test_paged_back_prepends(background):
    async_loop, app, agent = background
    app.follow = False
    facade = SyncMonitorFacade(async_loop=async_loop, agent=agent)

    handle = facade.open_session(
        target=ServerTarget("srv-1"), level=Level.INFO, streaming=False, offset=500
    )

    first = handle.load_more()
    earlier = handle.load_more(Direction.PREV, limit=200)

    assert earlier == first
    assert handle.snapshot() == earlier + first
    assert app.requests[0]["query"]["offset"] == "500"
    assert app.requests[1]["query"]["offset"] == "300"
    assert app.requests[1]["query"]["limit"] == "200"

    handle.close()

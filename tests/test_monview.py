import argparse
import io

import pytest

from agentmon.channels import create_lev_chan
from agentmon.config import Agent, AgentConfigCollection, AgentConfigSelector
from agentmon.events import Action, LogEvent
from agentmon.model.level import Level
from agentmon.model.target import ServerTarget
from agentmon.tools.terminal import TerminalPrinter
from monview.commands import CommandReader, Verb, parse_command
from monview.display import LineAssembler, LogDisplay
from monview.main import FatalError, Program, parse_args


class TestCommands:
    def test_level_names(self):
        command = parse_command("Debug\n")
        assert command.verb is Verb.LEVEL
        assert command.level is Level.DEBUG

    @pytest.mark.parametrize(
        "line, verb",
        [("mode", Verb.MODE), ("more", Verb.MORE), ("back", Verb.BACK), ("q", Verb.QUIT)],
    )
    def test_verbs(self, line, verb):
        assert parse_command(line).verb is verb

    def test_unknown_and_blank(self):
        assert parse_command("") is None
        assert parse_command("loud") is None

    def test_reader_forwards_commands(self):
        reader = CommandReader(stream=io.StringIO("info\nnonsense\nq\n"))
        reader.read_forever()

        assert reader.receiver.recv_nowait().level is Level.INFO
        assert reader.receiver.recv_nowait().verb is Verb.QUIT
        assert reader.receiver.recv_nowait() is None


class TestDisplay:
    def test_assembler_joins_partial_lines(self):
        assembler = LineAssembler()

        assert assembler.feed("one\ntw") == ["one"]
        assert assembler.feed("o\nthree") == ["two"]
        assert assembler.flush() == "three"
        assert assembler.flush() is None

    def test_drain_prints_lines(self):
        out = io.StringIO()
        display = LogDisplay(printer=TerminalPrinter(stream=out))
        chan = create_lev_chan()
        target = ServerTarget("srv-1")

        chan.sender.send(LogEvent(target=target, action=Action.APPENDED, object="plain li"))
        chan.sender.send(LogEvent(target=target, action=Action.APPENDED, object="ne\n"))

        assert display.drain(chan.receiver, timeout_s=0.01) is True
        assert out.getvalue() == "plain line\n"
        assert display.drain(chan.receiver, timeout_s=0.01) is False

    def test_severity_lines_keep_their_text(self):
        display = LogDisplay(printer=TerminalPrinter(stream=io.StringIO()))
        line = "2024-01-01T00:00:00Z [ERROR] agent: failed"

        formatted = display.format_line(line)

        assert line in formatted
        assert display.format_line("[INFO] agent: fine") == "[INFO] agent: fine"

    @pytest.mark.parametrize(
        "line",
        ["...changing log level to debug...", "...reconnecting in paged mode..."],
    )
    def test_markers_are_recognized(self, line):
        assert LogDisplay.rx_marker.match(line)


class TestProgram:
    def test_parse_args(self):
        args = parse_args(["--agent", "prod-*", "--server-id", "srv-1", "--level", "debug"])

        assert args.agent == "prod-*"
        assert args.server_id == "srv-1"
        assert args.client_id is None
        assert args.level == "debug"
        assert args.paged is False
        assert args.from_offset == 0

    def test_paged_from_offset(self):
        args = parse_args(["--client-id", "cli-1", "--paged", "--from-offset", "4096"])

        assert args.paged is True
        assert args.from_offset == 4096

    def test_target_is_required(self):
        with pytest.raises(SystemExit):
            parse_args(["--agent", "x"])

    def test_needs_exactly_one_agent(self, tmp_path):
        collection = AgentConfigCollection()
        collection.add_agent(Agent(name="a1", address="http://a1:4646"))
        collection.add_agent(Agent(name="a2", address="http://a2:4646"))
        selector = AgentConfigSelector(collection=collection)

        args = argparse.Namespace(
            agent="a*",
            client_id=None,
            server_id="srv-1",
            level="info",
            paged=False,
            from_offset=0,
        )
        program = Program(args, logfile=str(tmp_path / "monview.log"), selector=selector)

        with pytest.raises(FatalError):
            program.initialize()

        assert program.async_loop is None

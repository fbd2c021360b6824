import argparse
import logging
import os
from threading import current_thread
from typing import List, Optional

from agentmon.async_loop import AsyncLoop, launch_in_background_thread
from agentmon.config import AgentConfigSelector, get_selector
from agentmon.errors import AgentMonError
from agentmon.facade import MonitorHandle, SyncMonitorFacade
from agentmon.model.level import DEFAULT_LEVEL, LEVELS, Level
from agentmon.model.target import Target, make_target
from agentmon.stream import Direction
from agentmon.tools.logs import configure_logging
from agentmon.tools.terminal import TerminalPrinter
from monview.commands import Command, CommandReader, Verb
from monview.display import LogDisplay


class FatalError(Exception):
    pass


class Program:
    def __init__(
        self,
        args: argparse.Namespace,
        logfile="var/log/monview.log",
        selector: Optional[AgentConfigSelector] = None,
    ) -> None:
        self.args = args
        self.logfile = logfile
        self.logger = logging.getLogger("program")

        self.printer = TerminalPrinter()
        self.display = LogDisplay(printer=self.printer)
        self.selector = selector

        self.async_loop: Optional[AsyncLoop] = None
        self.handle: Optional[MonitorHandle] = None

    def get_target(self) -> Target:
        try:
            return make_target(client_id=self.args.client_id, server_id=self.args.server_id)
        except AgentMonError as exc:
            raise FatalError(str(exc))

    def initialize(self) -> None:
        main_thread = current_thread()
        main_thread.name = "UiThread"

        configure_logging(filename=self.logfile)

        # validate the selection before anything touches the network
        target = self.get_target()
        level = Level.parse(self.args.level)

        selector = self.selector or get_selector()
        agents = selector.fnmatch_agent(self.args.agent)

        if len(agents) != 1:
            names = [agent.name for agent in agents]
            raise FatalError(f"Need exactly 1 agent to monitor, matched: {names!r}")

        self.async_loop = launch_in_background_thread()
        facade = SyncMonitorFacade(
            async_loop=self.async_loop, agent=agents[0], settings=selector.settings
        )

        self.handle = facade.open_session(
            target=target,
            level=level,
            streaming=not self.args.paged,
            offset=self.args.from_offset,
        )

    def safe_initialize(self) -> bool:
        try:
            self.initialize()

        except Exception as exc:
            print(f"Failed to initialize: {exc}")

            if self.async_loop:
                self.async_loop.shutdown()

            return False

        return True

    def print_help(self) -> None:
        levels = "|".join(level.value for level in LEVELS)
        self.printer.loudln(f"commands: {levels} | mode | more | back | q")

    def handle_command(self, command: Command) -> bool:
        "Returns False once we should exit"

        assert self.handle is not None  # help mypy

        if command.verb is Verb.QUIT:
            return False

        try:
            if command.verb is Verb.LEVEL:
                self.handle.change_level(command.level)  # type: ignore

            elif command.verb is Verb.MODE:
                streaming = self.handle.toggle_mode()
                self.printer.loudln(
                    "switching to %s mode" % ("streaming" if streaming else "paged")
                )
                # the new mode only applies to a fresh connection
                self.handle.reconnect()

            elif command.verb in (Verb.MORE, Verb.BACK):
                if self.handle.is_streaming:
                    self.printer.loudln("'more' and 'back' only work in paged mode")
                    return True

                direction = Direction.NEXT if command.verb is Verb.MORE else Direction.PREV
                text = self.handle.load_more(direction)

                if direction is Direction.PREV and text:
                    self.printer.loudln("earlier output:")
                    self.display.show_text(text)

        except AgentMonError as exc:
            self.logger.error("Command %r failed: %r", command, exc)
            self.printer.loudln(f"{command.verb.value} failed: {exc}")

        return True

    def run_ui_loop(self) -> None:
        assert self.handle is not None  # help mypy
        assert self.async_loop is not None  # help mypy

        commands = CommandReader().start()
        self.print_help()

        try:
            while True:
                self.display.drain(self.handle.receiver, timeout_s=0.05)

                command = commands.recv_nowait()
                if command is not None and not self.handle_command(command):
                    break

        except KeyboardInterrupt:
            self.printer.loudln("\nCtrl-C received")

        except Exception:
            self.logger.exception("Uncaught exception in run_ui_loop()")

        self.handle.close()
        self.async_loop.shutdown()

    def run(self) -> None:
        if self.safe_initialize():
            self.run_ui_loop()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Tail the logs of a cluster agent")
    parser.add_argument(
        "--agent",
        dest="agent",
        action="store",
        default=os.getenv("AGENTMON_AGENT", "*"),
        help="Agent to connect to - matched like a filesystem wildcard",
    )

    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--client-id",
        dest="client_id",
        action="store",
        help="Id of the client node whose logs to stream",
    )
    group.add_argument(
        "--server-id",
        dest="server_id",
        action="store",
        help="Id of the server node whose logs to stream",
    )

    parser.add_argument(
        "--level",
        dest="level",
        action="store",
        default=DEFAULT_LEVEL.value,
        choices=[level.value for level in LEVELS],
        help="Log level to request",
    )
    parser.add_argument(
        "--paged",
        dest="paged",
        action="store_true",
        help="Fetch log ranges on demand instead of streaming",
    )
    parser.add_argument(
        "--from-offset",
        dest="from_offset",
        action="store",
        type=int,
        default=0,
        help="Where paged mode starts reading, 'back' loads what precedes it",
    )
    parser.add_argument(
        "--logfile",
        dest="logfile",
        action="store",
        default="var/log/monview.log",
        help="Where to write our own diagnostics",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    program = Program(args, logfile=args.logfile)
    program.run()

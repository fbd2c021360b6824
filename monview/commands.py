"""
Commands are read from stdin on a separate thread so the display loop never
blocks on the terminal.
"""

import enum
import sys
from queue import Queue
from threading import Thread
from typing import Optional, TextIO

from agentmon.channels import ChanReceiver, ChanSender
from agentmon.errors import PreconditionError
from agentmon.model.level import Level


class Verb(enum.Enum):
    LEVEL = "level"
    MODE = "mode"
    MORE = "more"
    BACK = "back"
    QUIT = "quit"


class Command:
    def __init__(self, verb: Verb, level: Optional[Level] = None) -> None:
        self.verb = verb
        self.level = level

    def __repr__(self) -> str:
        return "<%s verb=%s, level=%s>" % (
            self.__class__.__name__,
            self.verb.name,
            self.level,
        )


ALIASES = {
    "mode": Verb.MODE,
    "more": Verb.MORE,
    "back": Verb.BACK,
    "q": Verb.QUIT,
    "quit": Verb.QUIT,
}


def parse_command(line: str) -> Optional[Command]:
    word = line.strip().lower()
    if not word:
        return None

    verb = ALIASES.get(word)
    if verb is not None:
        return Command(verb)

    try:
        return Command(Verb.LEVEL, level=Level.parse(word))
    except PreconditionError:
        return None


class CommandReader:
    def __init__(self, stream: TextIO = sys.stdin) -> None:
        self.stream = stream

        queue: Queue = Queue()
        self.sender: ChanSender[Command] = ChanSender(queue)
        self.receiver: ChanReceiver[Command] = ChanReceiver(queue)

    def read_forever(self) -> None:
        for line in self.stream:
            command = parse_command(line)
            if command is not None:
                self.sender.send(command)

    def start(self) -> ChanReceiver[Command]:
        thread = Thread(target=self.read_forever, name="CommandReader", daemon=True)
        thread.start()
        return self.receiver

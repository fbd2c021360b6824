import enum
import time
from typing import Any

from agentmon.model.target import Target


class Action(enum.Enum):
    APPENDED = "APPENDED"
    LEVEL_CHANGED = "LEVEL_CHANGED"
    ERROR = "ERROR"


class LogEvent:
    def __init__(self, *, target: Target, action: Action, object: Any) -> None:
        self.target = target
        self.action = action
        self.object = object

        self.time_created = time.time()

    def __repr__(self) -> str:
        return "<%s target=%r, action=%s, object=%r>" % (
            self.__class__.__name__,
            self.target,
            self.action.name,
            self.object,
        )

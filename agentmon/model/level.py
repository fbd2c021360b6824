import enum
import functools

from agentmon.errors import PreconditionError


@functools.total_ordering
class Level(enum.Enum):
    """Log verbosity, from least to most verbose."""

    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    DEBUG = "debug"
    TRACE = "trace"

    @property
    def rank(self) -> int:
        return LEVELS.index(self)

    def __lt__(self, other) -> bool:
        if not isinstance(other, Level):
            return NotImplemented

        return self.rank < other.rank

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> "Level":
        try:
            return cls(text.strip().lower())
        except ValueError:
            names = ", ".join(level.value for level in LEVELS)
            raise PreconditionError(
                f"Unknown log level {text!r}, expected one of: {names}"
            ) from None


LEVELS = (Level.ERROR, Level.WARN, Level.INFO, Level.DEBUG, Level.TRACE)

DEFAULT_LEVEL = Level.INFO

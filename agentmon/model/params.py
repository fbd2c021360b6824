from typing import Dict, Iterator, Optional

from agentmon.errors import PreconditionError
from agentmon.model.level import Level
from agentmon.model.target import Target


class MonitorParams:
    """Request parameters derived from the current selection. Never mutated."""

    __slots__ = ("target_kind", "target_id", "log_level")

    def __init__(self, *, target: Target, level: Level) -> None:
        object.__setattr__(self, "target_kind", target.kind)
        object.__setattr__(self, "target_id", target.id)
        object.__setattr__(self, "log_level", level)

    def __setattr__(self, name, value) -> None:
        raise AttributeError("%s is immutable" % self.__class__.__name__)

    def __repr__(self) -> str:
        return "<%s %s=%r, log_level=%s>" % (
            self.__class__.__name__,
            self.target_kind,
            self.target_id,
            self.log_level,
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, MonitorParams):
            return NotImplemented

        return self.to_query() == other.to_query()

    def __hash__(self) -> int:
        return hash((self.target_kind, self.target_id, self.log_level))

    def to_query(self) -> Dict[str, str]:
        return {
            "log_level": self.log_level.value,
            self.target_kind: self.target_id,
        }


class RangeParams:
    def __init__(self, *, offset: int, limit: int) -> None:
        if offset < 0 or limit <= 0:
            raise PreconditionError(
                "Invalid range offset=%r limit=%r" % (offset, limit)
            )

        self.offset = offset
        self.limit = limit

    def __repr__(self) -> str:
        return "<%s offset=%r, limit=%r>" % (
            self.__class__.__name__,
            self.offset,
            self.limit,
        )

    def to_query(self) -> Dict[str, str]:
        return {"offset": str(self.offset), "limit": str(self.limit)}


class RetryPolicy:
    def __init__(
        self,
        *,
        max_attempts: int = 5,
        initial_delay_s: float = 0.5,
        multiplier: float = 2.0,
        max_delay_s: float = 30.0,
        page_attempts: int = 3,
        page_size: int = 16384,
    ) -> None:
        # how many times in a row a stream may be reconnected before we give up
        self.max_attempts = max_attempts
        self.initial_delay_s = initial_delay_s
        self.multiplier = multiplier
        # once the backoff would grow past this we give up instead of waiting
        self.max_delay_s = max_delay_s

        # total attempts for a single paged fetch
        self.page_attempts = page_attempts
        self.page_size = page_size

    def __repr__(self) -> str:
        return (
            "<%s max_attempts=%r, initial_delay_s=%r, multiplier=%r, "
            "max_delay_s=%r, page_attempts=%r, page_size=%r>"
        ) % (
            self.__class__.__name__,
            self.max_attempts,
            self.initial_delay_s,
            self.multiplier,
            self.max_delay_s,
            self.page_attempts,
            self.page_size,
        )

    def delays(self) -> Iterator[float]:
        delay = self.initial_delay_s

        for _ in range(self.max_attempts):
            if delay > self.max_delay_s:
                return

            yield delay
            delay *= self.multiplier

    def page_delay(self, attempt: int) -> Optional[float]:
        "Returns how long to wait before retrying a page fetch, or None to give up"

        if attempt >= self.page_attempts:
            return None

        return min(self.initial_delay_s * self.multiplier ** (attempt - 1), self.max_delay_s)

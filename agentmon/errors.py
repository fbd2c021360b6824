from typing import Optional


class AgentMonError(Exception):
    pass


class PreconditionError(AgentMonError):
    """The caller asked for something invalid, e.g. an ambiguous target."""


class AuthorizationError(AgentMonError):
    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(code, message)

        self.code = code
        self.message = message

    def __str__(self) -> str:
        return "authorization failed with status %s: %s" % (self.code, self.message)


class NetworkError(AgentMonError):
    """A transient transport failure. Worth retrying."""


class ProtocolError(AgentMonError):
    """The endpoint returned something we cannot make sense of."""


class RetryExhausted(AgentMonError):
    def __init__(self, attempts: int, last_error: Optional[Exception] = None) -> None:
        super().__init__(attempts, last_error)

        self.attempts = attempts
        self.last_error = last_error

    def __str__(self) -> str:
        return "gave up after %s attempts, last error: %r" % (
            self.attempts,
            self.last_error,
        )

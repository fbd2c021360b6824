from typing import Optional, Union

from agentmon.errors import PreconditionError


class _Target:
    kind = ""

    def __init__(self, id: str) -> None:
        if not isinstance(id, str) or not id:
            raise PreconditionError(
                "%s needs a non-empty id, got %r" % (self.__class__.__name__, id)
            )

        self.id = id

    def __repr__(self) -> str:
        return "<%s id=%r>" % (self.__class__.__name__, self.id)

    def __eq__(self, other) -> bool:
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((self.kind, self.id))

    def pretty(self) -> str:
        # client_id -> client/abc123
        return "%s/%s" % (self.kind.split("_")[0], self.id)


class ClientTarget(_Target):
    kind = "client_id"


class ServerTarget(_Target):
    kind = "server_id"


Target = Union[ClientTarget, ServerTarget]


def make_target(
    *, client_id: Optional[str] = None, server_id: Optional[str] = None
) -> Target:
    if client_id and server_id:
        raise PreconditionError("Provide a client OR a server to monitor, not both")

    if server_id:
        return ServerTarget(server_id)

    if client_id:
        return ClientTarget(client_id)

    raise PreconditionError("Provide a client or a server to monitor")


def is_target(obj) -> bool:
    return isinstance(obj, (ClientTarget, ServerTarget))

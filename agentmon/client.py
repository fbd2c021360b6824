import asyncio
import logging
from typing import AsyncIterator, Mapping, Optional
from urllib.parse import urlencode

from aiohttp import ClientResponse, ClientSession
from aiohttp.client import ClientTimeout
from aiohttp.client_exceptions import (
    ClientConnectionError,
    ClientPayloadError,
    ClientResponseError,
    TooManyRedirects,
)

from agentmon.auth import AuthProvider
from agentmon.config import Agent
from agentmon.errors import AuthorizationError, NetworkError, ProtocolError
from agentmon.frames import decode_frame, new_text_decoder
from agentmon.tools.logs import CtxLogger

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)
AUTHORIZATION_STATUSES = (401, 403)


class AsyncClient:
    """
    The authorized-fetch capability for one agent. Holds no per-stream state,
    so any number of controllers may share it.
    """

    def __init__(
        self,
        *,
        session: ClientSession,
        agent: Agent,
        auth_provider: Optional[AuthProvider] = None,
        read_timeout_s: float = 300,
        logger=None,
    ) -> None:
        self.session = session
        self.agent = agent
        self.read_timeout_s = read_timeout_s
        self.logger = logger or logging.getLogger("client")

        self.ssl_context = self.agent.create_ssl_context()
        self.auth_provider = auth_provider or AuthProvider(agent)

    # Logging

    def get_ctx_logger(self, path: str) -> CtxLogger:
        return CtxLogger(
            logger=self.logger,
            extra={"agent": self.agent.short_name, "path": path},
            prefix="[%(agent)s] [%(path)s] ",
        )

    # Requests

    def construct_url(self, path: str, params: Mapping[str, str]) -> str:
        url = f"{self.agent.address}{path}"

        if params:
            query = urlencode(params)
            url = f"{url}?{query}"

        return url

    async def check_response(self, response: ClientResponse) -> None:
        if response.status == 200:
            return

        try:
            message = (await response.text()).strip()
        except (ClientConnectionError, ClientPayloadError, UnicodeDecodeError):
            message = response.reason or ""

        if response.status in AUTHORIZATION_STATUSES:
            raise AuthorizationError(code=response.status, message=message)

        if response.status in RETRYABLE_STATUSES:
            raise NetworkError("status %s: %s" % (response.status, message))

        raise ProtocolError("Unexpected status %s: %s" % (response.status, message))

    async def request(
        self, path: str, params: Mapping[str, str]
    ) -> AsyncIterator[str]:
        log = self.get_ctx_logger(path)

        url = self.construct_url(path, params)

        kwargs = dict(
            ssl=self.ssl_context if self.ssl_context is not None else True,
            headers=self.auth_provider.get_headers(),
            timeout=ClientTimeout(
                sock_connect=3,
                sock_read=self.read_timeout_s,
            ),
        )

        log.info("Requesting %s", url)
        decoder = new_text_decoder()

        try:
            async with self.session.get(url, allow_redirects=True, **kwargs) as response:
                await self.check_response(response)

                # read one frame at a time, b'\n' terminated
                while True:
                    line = await response.content.readline()

                    if not line:
                        log.info("Received empty line, exiting")
                        break

                    text = decoder.decode(decode_frame(line))
                    if text:
                        yield text

                # an incomplete character at the very end is replaced
                text = decoder.decode(b"", final=True)
                if text:
                    yield text

        except (ClientConnectionError, ClientPayloadError, TooManyRedirects) as exc:
            raise NetworkError(repr(exc)) from exc

        except ClientResponseError as exc:
            raise ProtocolError(repr(exc)) from exc

        except asyncio.TimeoutError as exc:
            raise NetworkError("Timed out talking to %s" % url) from exc

"""A stand-in for an agent's monitor endpoint, served with aiohttp."""

import asyncio
import base64
import json
from typing import Any, Dict, List

from aiohttp import web
from aiohttp.test_utils import TestServer


def frame(text: str) -> bytes:
    return raw_frame(text.encode())


def raw_frame(blob: bytes) -> bytes:
    data = base64.b64encode(blob).decode()
    return (json.dumps({"Data": data}) + "\n").encode()


class AgentApp:
    def __init__(self, follow: bool = False) -> None:
        # keep the stream open after the scripted lines, like a real agent
        self.follow = follow
        self.address = ""
        self.requests: List[Dict[str, Any]] = []

    async def monitor(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(
            {"query": dict(request.query), "headers": dict(request.headers)}
        )

        status = int(request.query.get("status", 200))
        if status != 200:
            return web.Response(status=status, text="scripted failure")

        response = web.StreamResponse()
        await response.prepare(request)

        level = request.query.get("log_level", "info").upper()
        await response.write(frame(f"[{level}] agent: line one\n"))
        await response.write(b"{}\n")

        if request.query.get("malformed"):
            await response.write(b"not a frame\n")

        if request.query.get("split"):
            # one character cut in half by the frame boundary
            await response.write(raw_frame(b"h\xc3"))
            await response.write(raw_frame(b"\xa9llo\n"))

        await response.write(frame(f"[{level}] agent: line two\n"))

        while self.follow:
            await asyncio.sleep(0.05)
            await response.write(b"{}\n")

        await response.write_eof()
        return response

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/v1/agent/monitor", self.monitor)
        return app

    async def start(self) -> TestServer:
        server = TestServer(self.create_app())
        await server.start_server()
        return server

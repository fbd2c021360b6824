"""
The monitor endpoint streams newline delimited JSON frames:

    {"Data": "<base64 encoded log text>"}
    {}

An empty object is a heartbeat sent while the agent has nothing to say. The
agent cuts frames at byte boundaries, so a multi-byte character can be split
between two frames: decode the payloads of one connection with a single
incremental decoder.
"""

import base64
import binascii
import codecs
import json
from typing import Union

from agentmon.errors import ProtocolError


def new_text_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


def decode_frame(line: Union[str, bytes]) -> bytes:
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")

    line = line.strip()
    if not line:
        return b""

    try:
        frame = json.loads(line)
    except ValueError as exc:
        raise ProtocolError("Frame is not valid json: %r" % line[:80]) from exc

    if not isinstance(frame, dict):
        raise ProtocolError("Frame is not a json object: %r" % line[:80])

    data = frame.get("Data")
    if not data:
        return b""

    if not isinstance(data, str):
        raise ProtocolError("Frame data is not a string: %r" % type(data).__name__)

    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError("Frame data is not valid base64") from exc

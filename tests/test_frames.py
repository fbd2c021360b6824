import base64
import json

import pytest

from agentmon.errors import ProtocolError
from agentmon.frames import decode_frame, new_text_decoder


def frame(blob: bytes) -> bytes:
    data = base64.b64encode(blob).decode()
    return (json.dumps({"Data": data}) + "\n").encode()


def test_data_frame():
    assert decode_frame(frame(b"[INFO] agent: started\n")) == b"[INFO] agent: started\n"


def test_heartbeat_frame():
    assert decode_frame(b"{}\n") == b""


def test_blank_line():
    assert decode_frame(b"\n") == b""


def test_offset_is_ignored():
    data = base64.b64encode(b"hello").decode()
    assert decode_frame(json.dumps({"Data": data, "Offset": 12})) == b"hello"


def test_character_split_across_frames():
    decoder = new_text_decoder()

    first = decoder.decode(decode_frame(frame(b"h\xc3")))
    second = decoder.decode(decode_frame(frame(b"\xa9llo\n")))

    assert first == "h"
    assert first + second == "héllo\n"


def test_truncated_character_at_end():
    decoder = new_text_decoder()

    assert decoder.decode(decode_frame(frame(b"ok\xc3"))) == "ok"
    assert decoder.decode(b"", final=True) == "�"


def test_not_json():
    with pytest.raises(ProtocolError):
        decode_frame(b"this is not json\n")


def test_not_an_object():
    with pytest.raises(ProtocolError):
        decode_frame(b"[1, 2]\n")


def test_bad_base64():
    with pytest.raises(ProtocolError):
        decode_frame(b'{"Data": "!!not base64!!"}\n')

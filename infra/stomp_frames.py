"""
STOMP 1.2 frame encoding/decoding for text WebSocket messages.

Frame layout:
    COMMAND\n
    header1:value1\n
    header2:value2\n
    \n
    body\0

Header values are escaped (\\ \n \r :) on every frame except CONNECT and
CONNECTED, as STOMP 1.2 requires. A bare EOL between frames is a
heart-beat and decodes to nothing.
"""
from dataclasses import dataclass, field
from typing import Dict, List

NULL = "\x00"

_ESCAPES = [("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c")]
_UNESCAPES = {"\\\\": "\\", "\\r": "\r", "\\n": "\n", "\\c": ":"}

_RAW_HEADER_COMMANDS = {"CONNECT", "CONNECTED"}


class FrameError(ValueError):
    pass


@dataclass
class Frame:
    command: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        if value[i] == "\\":
            pair = value[i:i + 2]
            if pair not in _UNESCAPES:
                raise FrameError(f"invalid header escape {pair!r}")
            out.append(_UNESCAPES[pair])
            i += 2
        else:
            out.append(value[i])
            i += 1
    return "".join(out)


def encode_frame(frame: Frame) -> str:
    raw = frame.command in _RAW_HEADER_COMMANDS
    lines = [frame.command]
    for key, value in frame.headers.items():
        key, value = str(key), str(value)
        if not raw:
            key, value = _escape(key), _escape(value)
        lines.append(f"{key}:{value}")
    return "\n".join(lines) + "\n\n" + (frame.body or "") + NULL


def decode_frames(message: str) -> List[Frame]:
    """Decode every frame in one WebSocket text message (heart-beats are skipped)."""
    if isinstance(message, (bytes, bytearray)):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameError(f"frame is not valid UTF-8: {e}") from e
    frames = []
    for chunk in message.split(NULL):
        chunk = chunk.lstrip("\r\n")
        if not chunk:
            continue
        frames.append(_decode_one(chunk))
    return frames


def _decode_one(chunk: str) -> Frame:
    head, sep, body = chunk.partition("\n\n")
    if not sep:
        # CRLF line endings are allowed too
        head, sep, body = chunk.partition("\r\n\r\n")
    lines = head.replace("\r\n", "\n").split("\n")
    command = lines[0].strip()
    if not command:
        raise FrameError("frame without command")
    raw = command in _RAW_HEADER_COMMANDS
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        key, colon, value = line.partition(":")
        if not colon:
            raise FrameError(f"malformed header line {line!r}")
        if not raw:
            key, value = _unescape(key), _unescape(value)
        # repeated headers: the first occurrence wins
        headers.setdefault(key, value)
    return Frame(command=command, headers=headers, body=body)


# ---- builders for the client frames we send ----

def connect_frame(host: str, headers: Dict[str, str] | None = None) -> Frame:
    h = {"accept-version": "1.2,1.1", "host": host, "heart-beat": "0,0"}
    h.update(headers or {})
    return Frame("CONNECT", h)


def subscribe_frame(sub_id: str, destination: str) -> Frame:
    return Frame("SUBSCRIBE", {"id": sub_id, "destination": destination, "ack": "auto"})


def unsubscribe_frame(sub_id: str) -> Frame:
    return Frame("UNSUBSCRIBE", {"id": sub_id})


def send_frame(destination: str, body: str, content_type: str = "application/json") -> Frame:
    return Frame("SEND", {
        "destination": destination,
        "content-type": content_type,
        "content-length": str(len(body.encode("utf-8"))),
    }, body)


def disconnect_frame() -> Frame:
    return Frame("DISCONNECT", {})

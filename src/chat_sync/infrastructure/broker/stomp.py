"""STOMP 1.2 text frame codec."""
from __future__ import annotations

from dataclasses import dataclass, field

NULL = "\x00"
EOL = "\n"
HEARTBEAT = EOL

# CONNECT / CONNECTED headers are never escaped.
_RAW_HEADER_COMMANDS = frozenset({"CONNECT", "CONNECTED", "STOMP"})

_ESCAPES = (("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c"))
_UNESCAPES = {"\\\\": "\\", "\\r": "\r", "\\n": "\n", "\\c": ":"}


class FrameError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class Frame:
    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(value):
        if value[i] == "\\":
            pair = value[i : i + 2]
            if pair not in _UNESCAPES:
                raise FrameError(f"Invalid header escape {pair!r}")
            out.append(_UNESCAPES[pair])
            i += 2
        else:
            out.append(value[i])
            i += 1
    return "".join(out)


def encode_frame(frame: Frame) -> str:
    escape = frame.command not in _RAW_HEADER_COMMANDS
    lines = [frame.command]
    for name, value in frame.headers.items():
        if escape:
            name, value = _escape(name), _escape(str(value))
        lines.append(f"{name}:{value}")
    return EOL.join(lines) + EOL + EOL + frame.body + NULL


def _decode_one(chunk: str) -> Frame:
    chunk = chunk.replace("\r\n", "\n")
    head, sep, body = chunk.partition("\n\n")
    if not sep:
        raise FrameError("Frame without header terminator")
    command, *header_lines = head.split("\n")
    if not command:
        raise FrameError("Frame without command")
    unescape = command not in _RAW_HEADER_COMMANDS
    headers: dict[str, str] = {}
    for line in header_lines:
        name, colon, value = line.partition(":")
        if not colon:
            raise FrameError(f"Malformed header line {line!r}")
        if unescape:
            name, value = _unescape(name), _unescape(value)
        # Repeated headers: the first occurrence wins.
        headers.setdefault(name, value)
    return Frame(command=command, headers=headers, body=body)


def decode_frames(raw: str) -> list[Frame]:
    """Split a transport message into frames. Heart-beat EOLs yield nothing."""
    frames: list[Frame] = []
    for chunk in raw.split(NULL):
        chunk = chunk.lstrip("\r\n")
        if chunk:
            frames.append(_decode_one(chunk))
    return frames


def negotiate_heartbeat(client: tuple[int, int], server_header: str | None) -> tuple[int, int]:
    """Return (send_every_ms, expect_every_ms); 0 disables a direction."""
    client_send, client_recv = client
    try:
        server_send, server_recv = (int(part) for part in (server_header or "0,0").split(","))
    except ValueError:
        server_send, server_recv = 0, 0
    send_every = 0 if not client_send or not server_recv else max(client_send, server_recv)
    expect_every = 0 if not client_recv or not server_send else max(client_recv, server_send)
    return send_every, expect_every

"""
Assuan wire codec: request encoding and response classification.

Assuan is line oriented: every request and every response is one
line terminated by ``\\n``. Binary payloads travel in ``D`` lines,
percent-escaped so they never contain a raw newline.

Requests:
    <COMMAND> [<parameters>]
    D <percent-escaped bytes>

Responses, classified by prefix in this fixed order (first wins):
    OK [<message>]
    ERR <code> [<description>]
    S <keyword> <information>
    # <comment>
    D <percent-escaped bytes>
    INQUIRE <keyword> <parameters>

See https://www.gnupg.org/documentation/manuals/assuan/
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from urllib.parse import quote_from_bytes, unquote_to_bytes

from .errors import MalformedResponse, UnknownResponseType, WrongResponseType

RAW_DATA_PREFIX = b"D "


# ---------------------------------------------------------------------------
# Raw data escaping
# ---------------------------------------------------------------------------

def encode_raw_data(payload: bytes) -> bytes:
    """Percent-escape every byte outside the RFC 3986 unreserved set."""
    return quote_from_bytes(payload, safe="").encode("ascii")


def decode_raw_data(escaped: bytes) -> bytes:
    """Undo :func:`encode_raw_data` (any ``%XX`` escape is accepted)."""
    return unquote_to_bytes(escaped)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class Request:
    """One client request line, without its terminating newline."""

    __slots__ = ("_line",)

    def __init__(self, line: bytes) -> None:
        self._line = line

    @classmethod
    def command(cls, command: str, parameters: Optional[str] = None) -> "Request":
        """Build ``<command> <parameters>``.

        Raises:
            ValueError: If the command or parameters span several lines.
        """
        text = f"{command} {parameters}" if parameters else command
        if "\n" in text or "\r" in text:
            raise ValueError("Assuan commands must fit on a single line")
        return cls(text.encode("utf-8"))

    @classmethod
    def raw_data(cls, payload: bytes) -> "Request":
        """Build a ``D`` line carrying ``payload``."""
        return cls(RAW_DATA_PREFIX + encode_raw_data(payload))

    def to_bytes(self) -> bytes:
        return self._line

    def encode(self) -> bytes:
        """The line as sent on the wire, newline included."""
        return self._line + b"\n"

    def __repr__(self) -> str:
        if self._line.startswith(RAW_DATA_PREFIX):
            return f"Request(D <{len(self._line) - 2} escaped bytes>)"
        return f"Request({self._line!r})"


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class ResponseType(str, Enum):
    """Server response kinds, valued by their wire prefix."""

    OK = "OK"
    ERROR = "ERR"
    INFORMATION = "S "
    COMMENT = "#"
    RAW_DATA = "D"
    INQUIRE = "INQUIRE"


# Order matters: the first matching prefix wins.
_PRIORITY = (
    ResponseType.OK,
    ResponseType.ERROR,
    ResponseType.INFORMATION,
    ResponseType.COMMENT,
    ResponseType.RAW_DATA,
    ResponseType.INQUIRE,
)

_ERR_RE = re.compile(rb"^ERR\s(?P<code>\d+)(?:\s(?P<description>.*))?$", re.DOTALL)
_STATUS_RE = re.compile(rb"^S\s(?P<keyword>\w+)(?:\s(?P<rest>.*))?$", re.DOTALL)
_INQUIRE_RE = re.compile(
    rb"^(?:INQUIRE|S)\s(?P<keyword>\w+)(?:\s(?P<rest>.*))?$", re.DOTALL
)


@dataclass(frozen=True)
class ResponseOk:
    message: Optional[str] = None


@dataclass(frozen=True)
class ResponseError:
    code: int
    description: Optional[str] = None


@dataclass(frozen=True)
class ResponseRawData:
    data: bytes


@dataclass(frozen=True)
class ResponseInformation:
    keyword: str
    information: str


@dataclass(frozen=True)
class ResponseComment:
    comment: str


@dataclass(frozen=True)
class ResponseInquire:
    keyword: str
    parameters: str


DecodedResponse = Union[
    ResponseOk,
    ResponseError,
    ResponseRawData,
    ResponseInformation,
    ResponseComment,
    ResponseInquire,
]


def classify(line: bytes) -> ResponseType:
    """Return the type of a response line.

    Raises:
        UnknownResponseType: If no known prefix matches.
    """
    for response_type in _PRIORITY:
        if line.startswith(response_type.value.encode("ascii")):
            return response_type
    raise UnknownResponseType(f"Unknown agent response: {line[:32]!r}")


def split_lines(buffer: bytes) -> tuple[list[bytes], bytes]:
    """Split received bytes into complete lines and a trailing remainder.

    Returns:
        (lines without their newline, bytes after the last newline)
    """
    *lines, remainder = buffer.split(b"\n")
    return lines, remainder


class Response:
    """One unclassified response line from the agent."""

    __slots__ = ("_line",)

    def __init__(self, line: bytes) -> None:
        self._line = line

    @property
    def line(self) -> bytes:
        return self._line

    @property
    def type(self) -> ResponseType:
        return classify(self._line)

    def check_type(self, expected: ResponseType) -> None:
        actual = self.type
        if actual is not expected:
            raise WrongResponseType(f"Expected {expected.name} response, got {actual.name}")

    def to_ok(self) -> ResponseOk:
        self.check_type(ResponseType.OK)
        if len(self._line) <= 3:
            return ResponseOk()
        return ResponseOk(self._line[3:].decode("utf-8", "replace"))

    def to_error(self) -> ResponseError:
        self.check_type(ResponseType.ERROR)
        match = _ERR_RE.match(self._line)
        if not match:
            raise MalformedResponse(f"Cannot parse error response: {self._line!r}")
        description = match.group("description")
        return ResponseError(
            code=int(match.group("code")),
            description=description.decode("utf-8", "replace") if description is not None else None,
        )

    def to_raw_data(self) -> ResponseRawData:
        self.check_type(ResponseType.RAW_DATA)
        return ResponseRawData(decode_raw_data(self._line[2:]))

    def to_information(self) -> ResponseInformation:
        self.check_type(ResponseType.INFORMATION)
        match = _STATUS_RE.match(self._line)
        if not match:
            raise MalformedResponse(f"Cannot parse status response: {self._line!r}")
        return ResponseInformation(
            keyword=match.group("keyword").decode("ascii"),
            information=(match.group("rest") or b"").decode("utf-8", "replace"),
        )

    def to_comment(self) -> ResponseComment:
        self.check_type(ResponseType.COMMENT)
        comment = self._line[1:]
        if comment.startswith(b" "):
            comment = comment[1:]
        return ResponseComment(comment.decode("utf-8", "replace"))

    def to_inquire(self) -> ResponseInquire:
        """Decode an inquiry.

        Accepts ``INQUIRE <keyword> <params>`` as well as the
        ``S <keyword> <params>`` shape; which of the two a step sees
        is decided by the protocol script, not by this decoder.
        """
        actual = self.type
        if actual not in (ResponseType.INQUIRE, ResponseType.INFORMATION):
            raise WrongResponseType(f"Expected INQUIRE response, got {actual.name}")
        match = _INQUIRE_RE.match(self._line)
        if not match:
            raise MalformedResponse(f"Cannot parse inquire response: {self._line!r}")
        return ResponseInquire(
            keyword=match.group("keyword").decode("ascii"),
            parameters=(match.group("rest") or b"").decode("utf-8", "replace"),
        )

    def decode(self) -> DecodedResponse:
        """Classify and decode in one step."""
        decoders = {
            ResponseType.OK: self.to_ok,
            ResponseType.ERROR: self.to_error,
            ResponseType.INFORMATION: self.to_information,
            ResponseType.COMMENT: self.to_comment,
            ResponseType.RAW_DATA: self.to_raw_data,
            ResponseType.INQUIRE: self.to_inquire,
        }
        return decoders[self.type]()

    def __repr__(self) -> str:
        return f"Response({self._line[:40]!r})"

"""Parser for makemkvcon robot-mode (-r) output lines.

Every line is parsed into exactly one tagged variant. Lines that do not
match a known shape become UnrecognizedLine, so callers never have to
guard against exceptions while streaming tool output.

Line shapes handled:
    DRV:index,flags,count,typeCode,"description","discName","driveLetter"
    MSG:code,flags,count,"message","format",param...
    PRGV:current,total,max
    PRGT:code,id,"name"
    PRGC:code,id,"name"
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# DRV flag values
DRIVE_FLAG_MEDIA_PRESENT = 2
DRIVE_FLAG_EMPTY = 256

# DRV disc type codes
DVD_TYPE_CODE = 1
BLURAY_TYPE_CODE = 12

_DRV_PATTERN = re.compile(
    r'^DRV:(\d+),(\d+),(\d+),(\d+),"([^"]*)","([^"]*)","([A-Z]:)?"'
)


@dataclass(frozen=True)
class DriveRecordLine:
    """One drive reported by ``makemkvcon -r info disc:9999``."""

    index: int
    flags: int
    type_code: int
    description: str
    disc_name: str
    drive_letter: str | None

    @property
    def has_media(self) -> bool:
        return self.flags == DRIVE_FLAG_MEDIA_PRESENT

    @property
    def is_empty(self) -> bool:
        return self.flags == DRIVE_FLAG_EMPTY


@dataclass(frozen=True)
class MessageLine:
    """A diagnostic or informational message from the tool."""

    code: int
    flags: int
    text: str
    params: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProgressValueLine:
    """Progress counters; total and maximum share the same scale."""

    current: int
    total: int
    maximum: int

    @property
    def percent(self) -> float:
        if self.maximum <= 0:
            return 0.0
        return min(100.0, self.total / self.maximum * 100)


@dataclass(frozen=True)
class ProgressTitleLine:
    """Title of the overall operation (PRGT)."""

    code: int
    op_id: int
    name: str


@dataclass(frozen=True)
class ProgressCurrentLine:
    """Title of the current sub-operation (PRGC)."""

    code: int
    op_id: int
    name: str


@dataclass(frozen=True)
class UnrecognizedLine:
    """Anything that does not match a known line shape."""

    raw: str
    reason: str = "unknown prefix"


ToolLine = (
    DriveRecordLine
    | MessageLine
    | ProgressValueLine
    | ProgressTitleLine
    | ProgressCurrentLine
    | UnrecognizedLine
)


def split_robot_line(payload: str) -> list[str]:
    """Split a robot-mode payload on commas outside double quotes.

    Quotes are kept on the fields; use unquote() to strip them.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in payload:
        if char == '"':
            in_quotes = not in_quotes
            current.append(char)
        elif char == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


def unquote(value: str) -> str:
    """Strip one pair of surrounding double quotes, if present."""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def _parse_drive(line: str) -> ToolLine:
    match = _DRV_PATTERN.match(line)
    if match is None:
        return UnrecognizedLine(line, reason="malformed drive record")
    index, flags, _count, type_code, description, disc_name, letter = match.groups()
    return DriveRecordLine(
        index=int(index),
        flags=int(flags),
        type_code=int(type_code),
        description=description,
        disc_name=disc_name,
        drive_letter=letter or None,
    )


def _parse_message(line: str, payload: str) -> ToolLine:
    fields = split_robot_line(payload)
    if len(fields) < 4:
        return UnrecognizedLine(line, reason="malformed message")
    try:
        code = int(fields[0])
        flags = int(fields[1])
    except ValueError:
        return UnrecognizedLine(line, reason="malformed message")
    # fields[2] is the parameter count; fields[4] the format string
    params = tuple(unquote(f) for f in fields[5:])
    return MessageLine(code=code, flags=flags, text=unquote(fields[3]), params=params)


def _parse_progress_value(line: str, payload: str) -> ToolLine:
    fields = payload.split(",")
    if len(fields) != 3:
        return UnrecognizedLine(line, reason="malformed progress value")
    try:
        current, total, maximum = (int(f) for f in fields)
    except ValueError:
        return UnrecognizedLine(line, reason="malformed progress value")
    return ProgressValueLine(current=current, total=total, maximum=maximum)


def _parse_progress_title(line: str, payload: str, current: bool) -> ToolLine:
    fields = split_robot_line(payload)
    if len(fields) < 3:
        return UnrecognizedLine(line, reason="malformed progress title")
    try:
        code = int(fields[0])
        op_id = int(fields[1])
    except ValueError:
        return UnrecognizedLine(line, reason="malformed progress title")
    name = unquote(",".join(fields[2:]))
    if current:
        return ProgressCurrentLine(code=code, op_id=op_id, name=name)
    return ProgressTitleLine(code=code, op_id=op_id, name=name)


def parse_line(line: str | None) -> ToolLine:
    """Parse one line of robot-mode output.

    Never raises; any input that is not a recognized shape (including None
    and blank lines) yields an UnrecognizedLine.
    """
    if not isinstance(line, str):
        return UnrecognizedLine(repr(line), reason="not a string")
    line = line.rstrip("\r\n")
    prefix, sep, payload = line.partition(":")
    if not sep:
        return UnrecognizedLine(line)

    if prefix == "DRV":
        return _parse_drive(line)
    if prefix == "MSG":
        return _parse_message(line, payload)
    if prefix == "PRGV":
        return _parse_progress_value(line, payload)
    if prefix == "PRGT":
        return _parse_progress_title(line, payload, current=False)
    if prefix == "PRGC":
        return _parse_progress_title(line, payload, current=True)
    return UnrecognizedLine(line)

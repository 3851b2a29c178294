"""Alarm records written as JSON lines to a log stream."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, TextIO


class LogType(str, Enum):
    """Origin of an alarm record."""

    APP_ALARM = "APP_ALARM"
    APPFW_ALARM = "APPFW_ALARM"


class AlarmSeverity(str, Enum):
    """Severity of an alarm."""

    MINOR = "MINOR"
    MAJOR = "MAJOR"
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


class AlarmVisibility(str, Enum):
    """Where an alarm is shown."""

    GLOBAL = "GLOBAL"
    OPERATIONS = "OPERATIONS"


def _text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


@dataclass
class AlarmDetails:
    """The content of one alarm."""

    name: str = ""
    id: str = ""
    severity: AlarmSeverity | str = ""
    text: str = ""
    state: int = 0
    visibility: AlarmVisibility | str = ""
    subdn: str = ""

    def to_log_object(self) -> dict[str, Any]:
        """Return the alarm as the mapping written to the log."""
        obj: dict[str, Any] = {
            "name": self.name,
            "id": self.id,
            "severity": _text(self.severity),
            "text": self.text,
            "state": self.state,
        }
        if self.visibility:
            obj["visibility"] = _text(self.visibility)
        if self.subdn:
            obj["subdn"] = self.subdn
        return obj


class _AlarmLog:
    def __init__(self) -> None:
        self.stream: TextIO | None = None

    def write(self, record: dict[str, Any]) -> None:
        stream = self.stream if self.stream is not None else sys.stderr
        stream.write(json.dumps(record, separators=(",", ":")) + "\n")
        stream.flush()


_log = _AlarmLog()


def _timestamp(now: datetime | None = None) -> str:
    moment = (now or datetime.now()).astimezone()
    offset = moment.strftime("%z")
    zone = "Z" if offset in ("", "+0000") else offset
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}" + zone


def init_logger(stream: TextIO | None = None) -> None:
    """Direct alarm records to ``stream``; ``None`` means standard error."""
    _log.stream = stream


def _emit(logtype: LogType | str, alarm: AlarmDetails) -> None:
    _log.write(
        {
            "ts": _timestamp(),
            "log_type": _text(logtype),
            "alarm": alarm.to_log_object(),
        }
    )


def raise_alarm(logtype: LogType | str, alarm: AlarmDetails) -> None:
    """Log ``alarm`` as active (state 1), defaulting its visibility to global."""
    if not alarm.visibility:
        alarm.visibility = AlarmVisibility.GLOBAL
    alarm.state = 1
    _emit(logtype, alarm)


def clear_alarm(logtype: LogType | str, alarm: AlarmDetails) -> None:
    """Log ``alarm`` as cleared (state 0)."""
    alarm.state = 0
    _emit(logtype, alarm)
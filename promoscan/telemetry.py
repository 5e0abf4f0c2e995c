from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "promoscan.telemetry"

# Attribute names containing any of these are never written out.
_REDACTED_NAME_PARTS: frozenset[str] = frozenset(
    {
        "api_key",
        "authorization",
        "description",
        "password",
        "payload",
        "secret",
        "token",
    }
)
# Secrets that can ride along inside otherwise harmless values: the API key
# query parameter and credentials in Redis or probe URLs.
_KEY_QUERY_PARAM = re.compile(r"([?&]key=)[^&#\s]+", re.IGNORECASE)
_URL_CREDENTIALS = re.compile(r"(\w+://)[^/@\s]+@")
_MAX_VALUE_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes events to the dedicated telemetry log, tagged with their component.

    The component is the first dotted segment of the event name (``quota``,
    ``links``, ``uploads``, ``http``), so the telemetry file can be filtered
    per pipeline stage.
    """

    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info(
            "telemetry",
            telemetry_event=event_name,
            component=event_component(event_name),
            **dict(attributes),
        )


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=scrub_attributes(attributes))


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "unknown telemetry sink; telemetry disabled sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def event_component(event_name: str) -> str:
    component, _, _ = event_name.partition(".")
    return component or "unknown"


def scrub_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    scrubbed: dict[str, TelemetryValue] = {}
    for raw_name, raw_value in attributes.items():
        name = str(raw_name).strip().lower()
        if not name:
            continue
        if any(part in name for part in _REDACTED_NAME_PARTS):
            scrubbed[name] = "[redacted]"
        else:
            scrubbed[name] = _scrub_value(raw_value)
    return scrubbed


def _scrub_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if not isinstance(value, str):
        return type(value).__name__

    text = " ".join(value.split())
    text = _KEY_QUERY_PARAM.sub(r"\1[redacted]", text)
    text = _URL_CREDENTIALS.sub(r"\1[redacted]@", text)
    if len(text) > _MAX_VALUE_LENGTH:
        return f"{text[:_MAX_VALUE_LENGTH]}..."
    return text

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from promoscan.services.quota_ledger import QuotaStatus

MAX_UPSTREAM_MESSAGE_LENGTH = 200


class ScanError(Exception):
    code = "SCAN_ERROR"


class ConfigurationError(ScanError):
    code = "CONFIGURATION_ERROR"


class InvalidInputError(ScanError):
    code = "INVALID_INPUT"


class ChannelUnresolvableError(ScanError):
    code = "CHANNEL_UNRESOLVABLE"


class QuotaExceededError(ScanError):
    code = "QUOTA_EXCEEDED"

    def __init__(self, message: str, *, status: QuotaStatus) -> None:
        super().__init__(message)
        self.status = status


class UpstreamQuotaExceededError(QuotaExceededError):
    pass


class UpstreamHttpError(ScanError):
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(sanitize_upstream_message(message))
        self.status_code = status_code


def sanitize_upstream_message(
    message: str,
    *,
    max_length: int = MAX_UPSTREAM_MESSAGE_LENGTH,
) -> str:
    return " ".join(message.split())[:max_length]

"""Error taxonomy shared by the request pipeline and its components."""

from __future__ import annotations

import math
from typing import Any


class TaiBotError(Exception):
    """Base class for failures that carry a stable reason code."""

    reason_code = "tai_bot_error"

    def user_message(self) -> str:
        return "Sorry, something went wrong while processing your request."

    def as_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "reason_code": self.reason_code, "detail": str(self)}


class AdmissionDenied(TaiBotError):
    """Raised when a caller's token bucket is exhausted."""

    reason_code = "rate_limited"

    def __init__(self, caller_id: str, retry_after_s: float) -> None:
        self.caller_id = caller_id
        self.retry_after_s = max(0.0, float(retry_after_s))
        super().__init__(f"rate limit exceeded for caller {caller_id}")

    def user_message(self) -> str:
        seconds = max(1, math.ceil(self.retry_after_s))
        return f"⏳ Rate limit reached. Please wait {seconds}s before trying again."

    def as_dict(self) -> dict[str, Any]:
        payload = super().as_dict()
        payload["retry_after_s"] = self.retry_after_s
        return payload


class PermissionDenied(TaiBotError):
    """Raised when a caller's tier does not include a required feature."""

    reason_code = "permission_denied"

    def __init__(self, feature: str, reason: str) -> None:
        self.feature = feature
        self.reason = reason
        super().__init__(f"feature not allowed: {feature}")

    def user_message(self) -> str:
        return f"❌ {self.reason}"


class MalformedInput(TaiBotError):
    """Raised when user or model supplied input cannot be parsed."""

    reason_code = "malformed_input"

    def __init__(self, value: str, expected_format: str) -> None:
        self.value = value
        self.expected_format = expected_format
        super().__init__(f"malformed input {value!r}; expected {expected_format}")

    def user_message(self) -> str:
        return f"❌ Could not understand `{self.value}`. Expected format: {self.expected_format}."


class RemoteFailure(TaiBotError):
    """Raised when the tracker or the model provider fails or is unreachable.

    The detail is for logs and for the model; it is never shown to the caller.
    """

    reason_code = "remote_failure"

    def __init__(self, reason_code: str, detail: str = "") -> None:
        self.reason_code = reason_code
        self.detail = detail
        super().__init__(f"{reason_code}: {detail}" if detail else reason_code)


class ResolutionError(TaiBotError):
    """Raised when one or more free-text names did not map to a single entity."""

    reason_code = "resolution_failed"

    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = list(outcomes)
        super().__init__("; ".join(outcome.describe() for outcome in self.outcomes))

    def user_message(self) -> str:
        return f"❌ {self}"

"""
Generation Error Classifier

Turns whatever the remote generation API (or the lifecycle layer itself)
raised into one normalized, user-facing outcome.

Classification is a two-step pipeline:
1. extract_api_error() pulls an optional StructuredApiError out of the opaque
   input (exception, mapping, or JSON text).
2. classify() walks an ordered list of rules; the first matching rule builds
   the ClassifiedError. Rule order is the priority order.

classify() never raises.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from datamind.errors import (
    ApiCallError,
    DownloadFailedError,
    NoArtifactError,
    OperationTimedOutError,
)

logger = logging.getLogger(__name__)

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"
_RETRY_DELAY_RE = re.compile(r"^\s*(\d+)(?:\.\d+)?s\s*$")
_BILLING_RE = re.compile(r"([\w-]+) api is only accessible to billed users", re.IGNORECASE)

RATE_LIMIT_MESSAGE = "You've hit the API rate limit. Please try again in {delay} seconds."
QUOTA_MESSAGE = "You have exceeded your current API quota. Please check your plan and billing details."
BILLING_MESSAGE = (
    "The {capability} API is only accessible to users with billing enabled. "
    "Please check your project settings and API key."
)
EXPIRED_KEY_MESSAGE = "Your API key has expired. Please renew it and try again."
INVALID_KEY_MESSAGE = "Your API key is not valid. Please check your API key and try again."
NOT_PROVISIONED_MESSAGE = (
    "Your API key appears to be invalid or is not configured for this feature. "
    "Please select a valid key and try again."
)


class ErrorKind(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    BILLING_RESTRICTED = "billing_restricted"
    CREDENTIAL_EXPIRED = "credential_expired"
    CREDENTIAL_INVALID = "credential_invalid"
    CREDENTIAL_NOT_PROVISIONED = "credential_not_provisioned"
    GENERIC_API_ERROR = "generic_api_error"
    UNEXPECTED_ERROR = "unexpected_error"
    NO_ARTIFACT = "no_artifact"
    TIMED_OUT = "timed_out"
    DOWNLOAD_FAILED = "download_failed"


class StructuredApiError(BaseModel):
    """The `error` object of a Google-style API error body."""

    model_config = ConfigDict(extra="allow")

    code: int | None = None
    message: str = ""
    status: str | None = None
    details: list[dict[str, Any]] = Field(default_factory=list)


class ClassifiedError(BaseModel):
    """Normalized outcome surfaced to the user."""

    kind: ErrorKind
    user_message: str
    retry_delay_seconds: int | None = None
    credential_invalid: bool = False


# ---------- Extraction ----------


def _decode_json_object(text: str) -> dict[str, Any] | None:
    """Decode a JSON object from text, also when it is embedded in a longer message."""
    candidates = [text]
    start, end = text.find("{"), text.rfind("}")
    if 0 < start < end:
        candidates.append(text[start : end + 1])
    for candidate in candidates:
        try:
            decoded = json.loads(candidate)
        except (TypeError, ValueError):
            continue
        if isinstance(decoded, dict):
            return decoded
    return None


def _as_mapping(error: Any) -> Mapping[str, Any] | None:
    if error is None:
        return None
    if isinstance(error, Mapping):
        return error
    if isinstance(error, ApiCallError) and isinstance(error.payload, Mapping):
        return error.payload
    if isinstance(error, BaseException):
        return _decode_json_object(str(error))
    if isinstance(error, (str, bytes)):
        text = error.decode("utf-8", "replace") if isinstance(error, bytes) else error
        return _decode_json_object(text)
    return None


def extract_api_error(error: Any) -> StructuredApiError | None:
    """Return the structured API error carried by `error`, if any."""
    mapping = _as_mapping(error)
    if mapping is None:
        return None

    inner: Any = mapping.get("error", mapping)
    if not isinstance(inner, Mapping):
        return None
    # A bare mapping only counts as an API error when it carries error fields
    if inner is mapping and not any(key in mapping for key in ("code", "status")):
        return None

    try:
        return StructuredApiError.model_validate(dict(inner))
    except ValidationError:
        return None


def parse_retry_delay(api_error: StructuredApiError) -> int | None:
    """Find a `"<int>s"` retry delay in the error details, preferring RetryInfo."""
    details = sorted(api_error.details, key=lambda d: d.get("@type") != RETRY_INFO_TYPE)
    for detail in details:
        raw = detail.get("retryDelay")
        if not isinstance(raw, str):
            continue
        match = _RETRY_DELAY_RE.match(raw)
        if match:
            return int(match.group(1))
    return None


# ---------- Rules ----------


@dataclass(frozen=True)
class _ErrorContext:
    error: Any
    api_error: StructuredApiError | None
    text: str

    @property
    def lowered(self) -> str:
        return self.text.lower()


def _context_for(error: Any) -> _ErrorContext:
    api_error = extract_api_error(error)
    if api_error is not None:
        text = api_error.message
    elif isinstance(error, BaseException):
        text = str(error)
    else:
        text = error if isinstance(error, str) else ""
    return _ErrorContext(error=error, api_error=api_error, text=text)


def _is_rate_limited(ctx: _ErrorContext) -> bool:
    api_error = ctx.api_error
    return api_error is not None and (api_error.status == "RESOURCE_EXHAUSTED" or api_error.code == 429)


def _rate_limited(ctx: _ErrorContext) -> ClassifiedError:
    delay = parse_retry_delay(ctx.api_error) if ctx.api_error is not None else None
    if delay is not None:
        return ClassifiedError(
            kind=ErrorKind.QUOTA_EXCEEDED,
            user_message=RATE_LIMIT_MESSAGE.format(delay=delay),
            retry_delay_seconds=delay,
        )
    return ClassifiedError(kind=ErrorKind.QUOTA_EXCEEDED, user_message=QUOTA_MESSAGE)


def _is_billing_restricted(ctx: _ErrorContext) -> bool:
    return _BILLING_RE.search(ctx.text) is not None


def _billing_restricted(ctx: _ErrorContext) -> ClassifiedError:
    match = _BILLING_RE.search(ctx.text)
    capability = match.group(1) if match else "requested"
    return ClassifiedError(
        kind=ErrorKind.BILLING_RESTRICTED,
        user_message=BILLING_MESSAGE.format(capability=capability),
    )


def _is_bad_credential(ctx: _ErrorContext) -> bool:
    api_error = ctx.api_error
    if api_error is None:
        return False
    flagged = any(d.get("reason") == "API_KEY_INVALID" for d in api_error.details)
    return flagged or api_error.status == "INVALID_ARGUMENT"


def _bad_credential(ctx: _ErrorContext) -> ClassifiedError:
    if "expired" in ctx.lowered:
        return ClassifiedError(kind=ErrorKind.CREDENTIAL_EXPIRED, user_message=EXPIRED_KEY_MESSAGE)
    return ClassifiedError(kind=ErrorKind.CREDENTIAL_INVALID, user_message=INVALID_KEY_MESSAGE)


def _is_not_provisioned(ctx: _ErrorContext) -> bool:
    return "requested entity was not found" in ctx.lowered


def _not_provisioned(_ctx: _ErrorContext) -> ClassifiedError:
    return ClassifiedError(
        kind=ErrorKind.CREDENTIAL_NOT_PROVISIONED,
        user_message=NOT_PROVISIONED_MESSAGE,
        credential_invalid=True,
    )


def _has_api_error(ctx: _ErrorContext) -> bool:
    return ctx.api_error is not None


def _generic_api_error(ctx: _ErrorContext) -> ClassifiedError:
    api_error = ctx.api_error
    detail = (api_error.message or api_error.status) if api_error is not None else None
    detail = detail or "Unknown error"
    return ClassifiedError(kind=ErrorKind.GENERIC_API_ERROR, user_message=f"An API error occurred: {detail}")


_LIFECYCLE_KINDS: tuple[tuple[type[Exception], ErrorKind], ...] = (
    (NoArtifactError, ErrorKind.NO_ARTIFACT),
    (OperationTimedOutError, ErrorKind.TIMED_OUT),
    (DownloadFailedError, ErrorKind.DOWNLOAD_FAILED),
)


def _is_lifecycle_error(ctx: _ErrorContext) -> bool:
    return any(isinstance(ctx.error, exc_type) for exc_type, _ in _LIFECYCLE_KINDS)


def _lifecycle_error(ctx: _ErrorContext) -> ClassifiedError:
    kind = next(kind for exc_type, kind in _LIFECYCLE_KINDS if isinstance(ctx.error, exc_type))
    return ClassifiedError(kind=kind, user_message=str(ctx.error))


def _stringify(error: Any) -> str:
    try:
        return str(error)
    except Exception:  # __str__ of arbitrary objects may itself fail
        return repr(type(error))


def _unexpected(ctx: _ErrorContext) -> ClassifiedError:
    return ClassifiedError(
        kind=ErrorKind.UNEXPECTED_ERROR,
        user_message=f"An unexpected error occurred: {_stringify(ctx.error)}",
    )


Rule = tuple[str, Callable[[_ErrorContext], bool], Callable[[_ErrorContext], ClassifiedError]]

CLASSIFICATION_RULES: list[Rule] = [
    ("rate_limited", _is_rate_limited, _rate_limited),
    ("billing_restricted", _is_billing_restricted, _billing_restricted),
    ("bad_credential", _is_bad_credential, _bad_credential),
    ("not_provisioned", _is_not_provisioned, _not_provisioned),
    ("generic_api_error", _has_api_error, _generic_api_error),
    ("lifecycle_error", _is_lifecycle_error, _lifecycle_error),
]


def classify(error: Any) -> ClassifiedError:
    """Classify a failure from the generation capability into a user-facing outcome."""
    try:
        ctx = _context_for(error)
        for name, matches, build in CLASSIFICATION_RULES:
            if matches(ctx):
                logger.debug("Classified error via rule '%s'", name)
                return build(ctx)
        return _unexpected(ctx)
    except Exception as e:  # classification must always yield a message
        logger.error(f"Error classifier failed on {type(error).__name__}: {e}")
        return ClassifiedError(
            kind=ErrorKind.UNEXPECTED_ERROR,
            user_message=f"An unexpected error occurred: {_stringify(error)}",
        )

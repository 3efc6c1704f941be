"""
Datamind Exception Hierarchy

All failures raised by the lifecycle layer derive from DatamindError so the
tool boundary can catch them in one place before classification.
"""

from __future__ import annotations

import json
from typing import Any


class DatamindError(Exception):
    """Base class for all Datamind errors."""


# ---------- Generation lifecycle ----------


class GenerationError(DatamindError):
    """A generation request failed after it was accepted."""


class ApiCallError(GenerationError):
    """Non-success response from the remote generation API.

    The string form is the raw response body, the same shape SDKs use when
    they wrap a JSON error body into an exception message.
    """

    def __init__(self, status_code: int, body: str, payload: Any | None = None):
        super().__init__(body)
        self.status_code = status_code
        self.body = body
        if payload is None:
            try:
                payload = json.loads(body)
            except (TypeError, ValueError):
                payload = None
        self.payload = payload


class NoArtifactError(GenerationError):
    """The remote job reported success but returned no payload."""


class OperationTimedOutError(GenerationError):
    """A long-running operation did not finish within the polling bound."""


class DownloadFailedError(GenerationError):
    """Fetching a finished artifact returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationRejectedError(DatamindError):
    """A submission arrived while the session is loading or backing off."""


# ---------- History store ----------


class HistoryError(DatamindError):
    """Base class for history store errors."""


class HistoryItemNotFoundError(HistoryError, KeyError):
    """No history item exists with the requested id."""

    def __init__(self, item_id: str):
        super().__init__(item_id)
        self.item_id = item_id

    def __str__(self) -> str:
        return f"History item not found: {self.item_id}"


class HistoryTypeMismatchError(HistoryError):
    """Submitted data does not belong to the item's tool type."""


class HistoryFormatError(HistoryError):
    """Persisted history text could not be decoded."""

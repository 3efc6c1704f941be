"""
Generation Lifecycle Module

Error classification, retry countdown and long-running operation polling
shared by every tool.
"""

from __future__ import annotations

from .errors import ClassifiedError, ErrorKind, StructuredApiError, classify, extract_api_error
from .poller import VIDEO_PROGRESS_MESSAGES, OperationPoller
from .retry import RetryScheduler

__all__ = [
    "VIDEO_PROGRESS_MESSAGES",
    "ClassifiedError",
    "ErrorKind",
    "OperationPoller",
    "RetryScheduler",
    "StructuredApiError",
    "classify",
    "extract_api_error",
]

"""
Error Handling - Centralized error policies and custom exceptions.

This module defines how different error types are handled throughout
the sync engine: which failures are retried at the write-batch level,
which abort a run, and how they are logged.
"""

import logging
import sqlite3
from enum import Enum, auto
from dataclasses import dataclass
from typing import Any, Optional, Sequence


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this item, continue processing
    RETRY = auto()          # Retry the operation (with backoff)
    ABORT = auto()          # Stop the entire run


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    max_retries: int = 0
    message_template: str = "{item}: {error}"


class IndexingError(Exception):
    """Base exception for indexing errors."""
    pass


class ConfigurationError(IndexingError):
    """Required configuration is missing or invalid."""
    pass


class ValidationError(IndexingError):
    """A document in the batch cannot be indexed as given."""
    def __init__(self, message: str, index: Optional[int] = None, document: Any = None):
        self.index = index
        self.document = document
        super().__init__(message)


class TransientWriteError(IndexingError):
    """A single chunked write to the vector store or ledger failed."""
    def __init__(self, stage: str, keys: Sequence[str] = (), cause: Optional[BaseException] = None):
        self.stage = stage
        self.keys = list(keys)
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{stage} failed for {len(self.keys)} keys{detail}")


class IndexingFailedError(IndexingError):
    """
    A run stopped after exhausting retries.

    Carries the statistics accumulated so far and the keys whose writes
    were applied, so an operator can judge how much of the batch landed
    and re-run safely.
    """
    def __init__(
        self,
        message: str,
        stats: Any = None,
        succeeded_keys: Sequence[str] = (),
        failed_keys: Sequence[str] = (),
    ):
        self.stats = stats
        self.succeeded_keys = list(succeeded_keys)
        self.failed_keys = list(failed_keys)
        super().__init__(message)


class NoDocumentsError(IndexingError):
    """The document source produced nothing to index."""
    pass


class EmbeddingError(IndexingError):
    """Error during embedding generation."""
    pass


# Error type to policy mapping (first match wins, so subclasses go first)
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    ValidationError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Invalid document {item}: {error}"
    ),
    ConfigurationError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Configuration error: {error}"
    ),
    TransientWriteError: ErrorPolicy(
        action=ErrorAction.RETRY,
        log_level=logging.WARNING,
        max_retries=3,
        message_template="Write failed for {item}, will retry: {error}"
    ),
    sqlite3.OperationalError: ErrorPolicy(
        action=ErrorAction.RETRY,
        log_level=logging.WARNING,
        max_retries=3,
        message_template="Ledger busy ({item}): {error}"
    ),
    EmbeddingError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Embedding failed for {item}: {error}"
    ),
    UnicodeDecodeError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Cannot decode file (binary?): {item}"
    ),
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Permission denied: {item}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {item}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error reading file: {item} - {error}"
    ),
}


def get_policy(error: Exception) -> ErrorPolicy:
    """Look up the policy for an error type (or its base classes)."""
    for error_type, policy in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            return policy

    # Unknown errors abort: a silently skipped write would let the
    # vector store and the ledger diverge
    return ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Unexpected error: {item} - {error}"
    )


def handle_error(
    error: Exception,
    item: Any = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        item: The file, document or key batch being processed (if applicable)
        context: Additional context for logging

    Returns:
        The action to take (SKIP, RETRY, ABORT)
    """
    policy = get_policy(error)

    item_str = str(item) if item is not None else "<unknown>"
    message = policy.message_template.format(item=item_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action

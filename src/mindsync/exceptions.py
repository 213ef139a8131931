"""Exceptions raised by mindsync.

Expected outcomes of merge and rollback are values, not exceptions; these
cover storage failures and malformed input at the transport boundary.
"""

from __future__ import annotations


class MindsyncError(Exception):
    pass


class StorageError(MindsyncError):
    """The operation log or snapshot store failed to read or write."""


class InvalidOperationError(MindsyncError):
    """An inbound frame could not be decoded into an operation."""

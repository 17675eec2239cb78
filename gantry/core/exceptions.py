"""
Core Exceptions - Unified error hierarchy for Gantry.

Build errors abort before any provider call. State and lock errors are
retryable or fatal depending on the caller's policy. Provider errors are
isolated to the failing node's dependency subtree.
"""

from __future__ import annotations

from typing import Any


class GantryError(Exception):
    """Base exception for all Gantry errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | {self.details}"
        return self.message


# =============================================================================
# Configuration Errors (fatal at build time)
# =============================================================================

class ConfigurationError(GantryError):
    """Declarations or engine configuration are invalid."""
    pass


class InvalidConfigError(ConfigurationError):
    """Invalid configuration value."""
    pass


class DeclarationError(ConfigurationError):
    """A declaration document could not be parsed."""
    pass


class DuplicateResourceError(ConfigurationError):
    """Two declarations share the same logical id."""

    def __init__(self, logical_id: str):
        super().__init__(
            f"Resource '{logical_id}' is declared more than once",
            {"logical_id": logical_id}
        )
        self.logical_id = logical_id


class UnresolvedReferenceError(ConfigurationError):
    """A reference names a resource, attribute or variable that does not exist."""

    def __init__(self, source: str, target: str, reason: str):
        super().__init__(
            f"Unresolved reference to '{target}' in '{source}': {reason}",
            {"source": source, "target": target}
        )
        self.source = source
        self.target = target
        self.reason = reason


class CycleError(ConfigurationError):
    """Dependency resolution produced a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            {"cycle": cycle}
        )
        self.cycle = cycle


class UnknownResourceTypeError(ConfigurationError):
    """No provider is registered for a resource type."""

    def __init__(self, resource_type: str):
        super().__init__(
            f"No provider registered for resource type '{resource_type}'",
            {"resource_type": resource_type}
        )
        self.resource_type = resource_type


# =============================================================================
# State Errors
# =============================================================================

class StateError(GantryError):
    """State store operation failed."""
    pass


class VersionConflict(StateError):
    """Optimistic write rejected: the stored version moved on.

    Retryable: the caller must re-read state and re-plan.
    """

    def __init__(self, key: str, expected: int, actual: int):
        super().__init__(
            f"State '{key}' is at version {actual}, expected {expected}",
            {"key": key, "expected": expected, "actual": actual}
        )
        self.key = key
        self.expected = expected
        self.actual = actual


# =============================================================================
# Lock Errors
# =============================================================================

class LockError(GantryError):
    """Lock operation failed."""
    pass


class AlreadyLocked(LockError):
    """Another holder owns a live lock on the artifact."""

    def __init__(self, key: str, holder_id: str, expires_at: float):
        super().__init__(
            f"State '{key}' is locked by '{holder_id}'",
            {"key": key, "holder_id": holder_id, "expires_at": expires_at}
        )
        self.key = key
        self.holder_id = holder_id
        self.expires_at = expires_at


class LockLostError(LockError):
    """The lock expired or was taken over while a cycle was running.

    Fatal: no further state writes may be attempted.
    """

    def __init__(self, key: str, reason: str, report: Any = None):
        super().__init__(
            f"Lock on '{key}' lost: {reason}",
            {"key": key, "reason": reason}
        )
        self.key = key
        self.reason = reason
        self.report = report


# =============================================================================
# Execution Errors
# =============================================================================

class ExecutionError(GantryError):
    """Plan execution failed."""
    pass


class ProviderError(ExecutionError):
    """A provider rejected a create, update or destroy call."""

    def __init__(self, logical_id: str, operation: str, reason: str):
        super().__init__(
            f"Provider {operation} of '{logical_id}' failed: {reason}",
            {"logical_id": logical_id, "operation": operation}
        )
        self.logical_id = logical_id
        self.operation = operation
        self.reason = reason

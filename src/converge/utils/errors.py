"""Custom exception classes for converge."""

from typing import List, Optional


class ConvergeError(Exception):
    """Base exception for all converge errors."""
    pass


class SettingsError(ConvergeError):
    """Raised when engine settings are invalid or missing."""
    pass


class ConfigurationError(ConvergeError):
    """Raised when declared configuration is invalid. Never retried."""
    pass


class CycleError(ConfigurationError):
    """Raised when the reference graph contains a cycle."""

    def __init__(self, nodes: List[str]):
        self.nodes = list(nodes)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.nodes)}")


class UnresolvedReferenceError(ConfigurationError):
    """Raised when a reference points to a disabled or absent module, input or resource."""

    def __init__(self, reference: str, source: str, reason: str):
        self.reference = reference
        self.source = source
        super().__init__(f"Unresolved reference '{reference}' in {source}: {reason}")


class ImmutableFieldError(ConfigurationError):
    """Raised when a change would destroy a resource protected by prevent_destroy."""

    def __init__(self, address: str, attributes: Optional[List[str]] = None):
        self.address = address
        self.attributes = list(attributes or [])
        if self.attributes:
            detail = f"changing immutable attribute(s) {', '.join(self.attributes)} requires replacement"
        else:
            detail = "the plan destroys it"
        super().__init__(f"Resource {address} has prevent_destroy set but {detail}")


class ProviderError(ConvergeError):
    """Raised by providers when a resource operation fails."""

    def __init__(self, message: str, address: Optional[str] = None, operation: Optional[str] = None):
        self.address = address
        self.operation = operation
        super().__init__(message)

    def describe(self) -> str:
        """Message naming the resource and operation when known."""
        if self.address and self.operation:
            return f"{self.operation} {self.address}: {self}"
        return str(self)


class RetryableProviderError(ProviderError):
    """Transient provider failure (rate limiting, network blips)."""
    pass


class FatalProviderError(ProviderError):
    """Non-transient provider failure (invalid configuration, permission denied)."""
    pass


class StateError(ConvergeError):
    """Base class for state store failures."""
    pass


class StateNotFoundError(StateError):
    """Raised when no snapshot exists for an environment."""

    def __init__(self, environment: str):
        self.environment = environment
        super().__init__(f"No state found for environment '{environment}'")


class StateCorruptionError(StateError):
    """Raised when a stored snapshot cannot be decoded or fails its checksum."""
    pass


class ConflictError(StateError):
    """Raised when a compare-and-swap write finds an unexpected serial."""

    def __init__(self, environment: str, expected: int, actual: int):
        self.environment = environment
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"State for '{environment}' was modified concurrently: "
            f"expected serial {expected}, found {actual}"
        )


class LockHeldError(StateError):
    """Raised when the environment lock is held by someone else."""

    def __init__(self, environment: str, holder: str, lock_id: Optional[str] = None):
        self.environment = environment
        self.holder = holder
        self.lock_id = lock_id
        message = f"State lock for '{environment}' is held by '{holder}'"
        if lock_id:
            message += f" (lock id {lock_id})"
        super().__init__(message)


class LockError(StateError):
    """Raised when a lock is released or used by a non-holder."""
    pass


class OperationCancelledError(ConvergeError):
    """Raised when a blocking operation is cancelled by the caller."""
    pass

"""
Centralized exception hierarchy for ReleaseKit.

Every stage of a release run raises one of the exceptions below. The
orchestrator converts stage errors into the failed state of the matrix entry
that raised them; only ConfigError aborts a run before any work starts.
"""


# ============================================================================
# Base Exceptions
# ============================================================================


class ReleaseKitError(Exception):
    """Base exception for all ReleaseKit errors."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigError(ReleaseKitError):
    """Invalid matrix or configuration. Fatal, raised before any work."""

    pass


class UnknownTargetError(ConfigError):
    """Raised when a target triple has no known provisioning strategy."""

    def __init__(self, triple: str):
        self.triple = triple
        super().__init__(f"No known provisioning strategy for target: {triple}")


# ============================================================================
# Stage Exceptions
# ============================================================================


class StageError(ReleaseKitError):
    """Base exception for errors raised by a pipeline stage."""

    pass


class ProvisionError(StageError):
    """
    Toolchain acquisition failed (network, checksum, installer).

    Retriable errors are retried by the provisioner with bounded backoff;
    errors that cannot improve on retry (a missing tool) are not.
    """

    def __init__(self, message: str, retriable: bool = True):
        self.retriable = retriable
        super().__init__(message)


class BuildError(StageError):
    """Compile, link or verification failure. Never retried."""

    def __init__(self, message: str, exit_code=None, output_tail=None):
        self.exit_code = exit_code
        self.output_tail = list(output_tail or [])
        super().__init__(message)


class BuildTimeoutError(BuildError):
    """Raised when a build exceeds the per-entry timeout."""

    def __init__(self, triple: str, timeout: float, output_tail=None):
        self.triple = triple
        self.timeout = timeout
        super().__init__(
            f"Build for {triple} timed out after {timeout:g}s",
            output_tail=output_tail,
        )


class ArchitectureMismatchError(BuildError):
    """Raised when the produced binary does not match the target architecture."""

    def __init__(self, binary_path, detected: str, expected: str):
        self.binary_path = binary_path
        self.detected = detected
        self.expected = expected
        super().__init__(
            f"Architecture mismatch for {binary_path}: "
            f"expected {expected}, detected {detected}"
        )


class PackagingError(StageError):
    """Post-build packaging failed. The verified binary is retained."""

    pass


class CancelledError(StageError):
    """The run was cancelled externally. Not a defect."""

    def __init__(self, message: str = "cancelled"):
        super().__init__(message)


# ============================================================================
# Cache Exceptions
# ============================================================================


class CacheError(ReleaseKitError):
    """Base exception for toolchain cache errors."""

    pass


class CacheLockTimeout(CacheError):
    """Raised when a cache key lock cannot be acquired within timeout."""

    pass

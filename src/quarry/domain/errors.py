from typing import Optional


class QuarryError(Exception):
    """base class for recoverable errors in quarry."""
    pass


class RegistryError(QuarryError):
    """raised when a registry cannot be reached or read."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(RegistryError):
    """raised when the registry rejects (or we lack) credentials."""
    pass


class PublishError(RegistryError):
    """raised when the registry refuses a publish request."""
    pass


class OfflineError(QuarryError):
    """raised when network access is attempted in offline mode."""
    pass


class ChecksumMismatchError(QuarryError):
    """raised when a downloaded archive does not match its index record."""
    def __init__(self, package: str, expected: str, actual: str):
        self.package = package
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"checksum mismatch for {package}: expected {expected}, got {actual}"
        )


class PackageNotFoundError(QuarryError):
    """raised by callers when a registry answers NotFound."""
    def __init__(self, package: str):
        self.package = package
        super().__init__(f"package {package} does not exist in the registry")


class ContractViolation(AssertionError):
    """a programming error on the caller's (or a client's) side.

    deliberately not a QuarryError: these are bugs, not runtime conditions.
    """
    pass

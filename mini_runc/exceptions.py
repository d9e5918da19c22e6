"""Exceptions raised by Mini-Runc."""

from typing import Optional


class MiniRuncError(Exception):
    """Base exception for all Mini-Runc errors."""

    pass


class ConfigError(MiniRuncError):
    """Raised when a run configuration is invalid."""

    pass


class ArchiveError(MiniRuncError):
    """Raised when a tar.gz archive cannot be read or written."""

    pass


class DigestMismatchError(MiniRuncError):
    """Raised when an archive does not match its expected digest."""

    def __init__(self, path: str, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"expected sha256 sum {expected} does not match actual sum of "
            f"{path}: {actual}"
        )


class ManifestError(MiniRuncError):
    """Raised when manifest.json is missing, malformed or ambiguous."""

    pass


class EmptyImageError(ManifestError):
    """Raised when an image manifest references no layers."""

    pass


class OCIError(MiniRuncError):
    """Raised for runtime configuration template problems."""

    pass


class RuntimeCommandError(MiniRuncError):
    """Raised when the external container runtime fails."""

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.returncode = returncode
        self.stderr = stderr
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class ContainerStateError(MiniRuncError):
    """Raised when a reentrant container is in an unexpected state."""

    pass


class BuildError(MiniRuncError):
    """Raised when an output image cannot be built."""

    pass

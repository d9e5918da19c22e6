"""Content digests of image archives.

A digest is the lowercase hex SHA-256 of an archive's *decompressed* tar
stream, so recompressing the same content at another gzip level does not
change it.
"""

import gzip
import hashlib
import logging
import zlib

from mini_runc.exceptions import ArchiveError, DigestMismatchError

logger = logging.getLogger(__name__)

SKIP_VALIDATION = "skip-sha256-validation"
DIGEST_PREFIX = "sha256:"
CHUNK_SIZE = 1024 * 1024


def bytes_sha256(data: bytes) -> str:
    """Hex SHA-256 of a byte string."""
    return hashlib.sha256(data).hexdigest()


def tar_sha256(path: str) -> str:
    """Hex SHA-256 of the decompressed content of a tar.gz file.

    Args:
        path: Path to the .tar.gz file

    Returns:
        Lowercase hex digest

    Raises:
        ArchiveError: If the file cannot be read or is not gzip data
    """
    hasher = hashlib.sha256()
    try:
        with gzip.open(path, "rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                hasher.update(chunk)
    except (OSError, EOFError, zlib.error) as e:
        raise ArchiveError(f"Cannot compute digest of {path}: {e}") from e
    return hasher.hexdigest()


def normalize_digest(value: str) -> str:
    """Strip an optional "sha256:" prefix and lowercase."""
    value = value.strip()
    if value.lower().startswith(DIGEST_PREFIX):
        value = value[len(DIGEST_PREFIX):]
    return value.lower()


def verify_archive_digest(path: str, expected: str) -> str:
    """Check an archive against the digest the caller expects.

    Passing SKIP_VALIDATION disables the check; the actual digest is then
    logged as a warning so it can be pinned later.

    Args:
        path: Path to the .tar.gz archive
        expected: Expected digest or SKIP_VALIDATION

    Returns:
        The actual digest

    Raises:
        DigestMismatchError: If the digests differ
    """
    actual = tar_sha256(path)

    if expected == SKIP_VALIDATION:
        logger.warning(
            "continuing due to %s option (actual value is %s)", SKIP_VALIDATION, actual
        )
        return actual

    if normalize_digest(expected) != actual:
        raise DigestMismatchError(path, expected, actual)

    logger.info("%s sha256sum of %s validation complete", path, actual)
    return actual

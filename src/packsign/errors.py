"""Error taxonomy for pack canonicalization, signing and verification.

Every failure maps to exactly one error kind so callers can tell tampering
apart from a missing key or a misconfigured pack. Nothing here is retried.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any


class PackError(Exception):
    """Base class for all pack signing errors."""
    pass


class FilesystemError(PackError):
    """Path resolution, read, write or directory walk failure."""

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class PathEncodingError(PackError):
    """A tracked file's relative path is not representable as portable text."""
    pass


class ManifestNotFoundError(PackError):
    """No recognized manifest filename exists in the pack root."""
    pass


class ManifestParseError(PackError):
    """Manifest content (or its signature block) is not valid structured data."""
    pass


class LoadKeyError(PackError):
    """A private key PEM could not be loaded into an Ed25519 key."""
    pass


class VerificationFailure(Enum):
    """Distinct causes of a failed verification."""

    MISSING_SIGNATURE = "missing_signature"
    DIGEST_MISMATCH = "digest_mismatch"
    UNSUPPORTED_ALGORITHM = "unsupported_algorithm"
    KEY_NOT_FOUND = "key_not_found"
    KEY_ID_MISMATCH = "key_id_mismatch"
    SIGNATURE_DECODE = "signature_decode"
    SIGNATURE_LENGTH = "signature_length"
    SIGNATURE_MALFORMED = "signature_malformed"
    PUBLIC_KEY = "public_key"
    INVALID_SIGNATURE = "invalid_signature"


class VerificationError(PackError):
    """Verification failed for the reason given by ``kind``.

    ``details`` carries only the data needed to diagnose that kind, e.g.
    ``expected``/``computed`` for a digest mismatch or ``key_id`` when no
    public key was supplied.
    """

    def __init__(self, kind: VerificationFailure, message: str, **details: Any) -> None:
        super().__init__(message)
        self.kind = kind
        self.details = details

    def __getattr__(self, name: str) -> Any:
        details = self.__dict__.get("details", {})
        if name in details:
            return details[name]
        raise AttributeError(name)

    @classmethod
    def missing_signature(cls) -> VerificationError:
        return cls(
            VerificationFailure.MISSING_SIGNATURE,
            "pack manifest is missing a greentic.signature block",
        )

    @classmethod
    def digest_mismatch(cls, expected: str, computed: str) -> VerificationError:
        return cls(
            VerificationFailure.DIGEST_MISMATCH,
            f"computed digest {computed} does not match manifest digest {expected}",
            expected=expected,
            computed=computed,
        )

    @classmethod
    def unsupported_algorithm(cls, algorithm: str) -> VerificationError:
        return cls(
            VerificationFailure.UNSUPPORTED_ALGORITHM,
            f"signature algorithm {algorithm} is not supported",
            algorithm=algorithm,
        )

    @classmethod
    def key_not_found(cls, key_id: str) -> VerificationError:
        return cls(
            VerificationFailure.KEY_NOT_FOUND,
            f"public key not provided for key id {key_id}",
            key_id=key_id,
        )

    @classmethod
    def key_id_mismatch(cls, expected: str, provided: str) -> VerificationError:
        return cls(
            VerificationFailure.KEY_ID_MISMATCH,
            f"public key does not match manifest key id (expected {expected}, got {provided})",
            expected=expected,
            provided=provided,
        )

    @classmethod
    def signature_decode(cls, reason: str) -> VerificationError:
        return cls(
            VerificationFailure.SIGNATURE_DECODE,
            f"failed to decode signature: {reason}",
            reason=reason,
        )

    @classmethod
    def signature_length(cls, length: int) -> VerificationError:
        return cls(
            VerificationFailure.SIGNATURE_LENGTH,
            f"signature has invalid length: {length}",
            length=length,
        )

    @classmethod
    def signature_malformed(cls) -> VerificationError:
        return cls(VerificationFailure.SIGNATURE_MALFORMED, "signature bytes were malformed")

    @classmethod
    def public_key(cls, reason: str) -> VerificationError:
        return cls(
            VerificationFailure.PUBLIC_KEY,
            f"failed to parse public key PEM: {reason}",
            reason=reason,
        )

    @classmethod
    def invalid_signature(cls, key_id: str) -> VerificationError:
        return cls(
            VerificationFailure.INVALID_SIGNATURE,
            f"signature verification failed for key {key_id}",
            key_id=key_id,
        )

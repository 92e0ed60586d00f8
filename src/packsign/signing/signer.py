"""Pack signer.

Signs the canonical byte stream of a pack directory with an Ed25519 key.
Ed25519 signatures are deterministic, so signing an unchanged pack with the
same key always yields the same ``sig`` and ``digest``.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from packsign.manifest import PackSignature
from packsign.signing.canon import CanonicalizedPack, canonicalize_pack_dir
from packsign.signing.keys import derive_key_id, load_signing_key

logger = logging.getLogger(__name__)


def encode_signature(raw: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class SigningOutcome:
    """Result of signing a pack directory."""

    signature: PackSignature
    canonical: CanonicalizedPack


def sign_pack(
    pack_dir: Path,
    private_key_pem: str,
    key_id: str | None = None,
) -> SigningOutcome:
    """Sign a pack directory without persisting the signature.

    Args:
        pack_dir: Pack root
        private_key_pem: Ed25519 private key (PKCS#8 PEM)
        key_id: Explicit key identifier (default: derived from the public key)

    Returns:
        SigningOutcome with the signature record and the canonical bytes

    Raises:
        LoadKeyError: If the private key cannot be loaded
    """
    canonical = canonicalize_pack_dir(pack_dir)

    signing_key = load_signing_key(private_key_pem)
    if key_id is None:
        key_id = derive_key_id(signing_key.public_key())

    raw = signing_key.sign(canonical.bytes)

    signature = PackSignature(
        alg=PackSignature.ED25519,
        key_id=key_id,
        created_at=datetime.now(timezone.utc),
        digest=canonical.digest,
        sig=encode_signature(raw),
    )
    logger.info("Signed pack %s with key %s (%s)", pack_dir, key_id, signature.digest)

    return SigningOutcome(signature=signature, canonical=canonical)

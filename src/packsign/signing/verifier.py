"""Pack signature verification.

Checks run in a fixed order and stop at the first failure:

1. canonicalize the pack
2. read the stored signature (or accept an unsigned pack when allowed)
3. algorithm
4. digest (tamper detection, before any cryptography)
5-7. public key presence, parsing and key id
8. signature encoding and length
9. Ed25519 verification
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import InvalidSignature

from packsign.errors import VerificationError
from packsign.manifest import PackSignature, read_signature
from packsign.signing.canon import canonicalize_pack_dir
from packsign.signing.keys import derive_key_id, load_verifying_key
from packsign.signing.signer import encode_signature

logger = logging.getLogger(__name__)

SIGNATURE_SIZE = 64

_URLSAFE_NOPAD_RE = re.compile(r"[A-Za-z0-9_-]*")


@dataclass(frozen=True)
class VerifyOptions:
    """Options used when verifying pack signatures."""

    public_key_pem: str | None = None
    allow_unsigned: bool = False


def decode_signature(value: str) -> bytes:
    """Decode a stored signature (URL-safe base64, no padding).

    A strict no-padding decoder rejects non-zero trailing bits outright and
    would call that a decode failure. Here such a value is accepted by the
    decoder, length-checked, and then reported as ``SIGNATURE_MALFORMED``
    so the non-canonical encoding is distinguishable from garbage input.

    Raises:
        VerificationError: SIGNATURE_DECODE, SIGNATURE_LENGTH or
            SIGNATURE_MALFORMED
    """
    if not _URLSAFE_NOPAD_RE.fullmatch(value):
        raise VerificationError.signature_decode("invalid symbol in base64url value")
    try:
        raw = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except binascii.Error as e:
        raise VerificationError.signature_decode(str(e)) from e

    if len(raw) != SIGNATURE_SIZE:
        raise VerificationError.signature_length(len(raw))

    # Non-zero trailing bits decode fine but are not the canonical encoding
    if encode_signature(raw) != value:
        raise VerificationError.signature_malformed()
    return raw


def verify_pack(pack_dir: Path, opts: VerifyOptions | None = None) -> PackSignature:
    """Verify a signed pack directory.

    Args:
        pack_dir: Pack root
        opts: Public key and unsigned-pack policy

    Returns:
        The stored signature, or the unsigned sentinel when an unsigned pack
        is accepted

    Raises:
        VerificationError: For every verification failure, see ``kind``
        FilesystemError, PathEncodingError, ManifestNotFoundError,
        ManifestParseError: Propagated unchanged from canonicalization and
            manifest reading
    """
    opts = opts or VerifyOptions()
    canonical = canonicalize_pack_dir(pack_dir)
    computed = canonical.digest

    signature = read_signature(Path(pack_dir))
    if signature is None:
        if opts.allow_unsigned:
            logger.info("Accepting unsigned pack %s (%s)", pack_dir, computed)
            return PackSignature.unsigned(computed)
        raise VerificationError.missing_signature()

    if signature.alg.lower() != PackSignature.ED25519:
        raise VerificationError.unsupported_algorithm(signature.alg)

    if signature.digest != computed:
        raise VerificationError.digest_mismatch(expected=signature.digest, computed=computed)

    if opts.public_key_pem is None:
        raise VerificationError.key_not_found(signature.key_id)

    try:
        verifying_key = load_verifying_key(opts.public_key_pem)
    except ValueError as e:
        raise VerificationError.public_key(str(e)) from e

    provided = derive_key_id(verifying_key)
    if provided != signature.key_id:
        raise VerificationError.key_id_mismatch(expected=signature.key_id, provided=provided)

    raw = decode_signature(signature.sig)

    try:
        verifying_key.verify(raw, canonical.bytes)
    except InvalidSignature as e:
        raise VerificationError.invalid_signature(signature.key_id) from e

    logger.info("Verified pack %s with key %s", pack_dir, signature.key_id)
    return signature

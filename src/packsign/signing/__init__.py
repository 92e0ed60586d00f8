"""Pack signing and verification (tamper-evident packs).

Provides deterministic canonicalization of a pack directory, Ed25519
signing with the signature embedded in the pack manifest, and verification
with one distinct error kind per failure cause.
"""

from __future__ import annotations

from pathlib import Path

from packsign.manifest import PackSignature, write_signature
from packsign.signing.canon import CanonicalizedPack, canonicalize_pack_dir
from packsign.signing.signer import SigningOutcome, sign_pack
from packsign.signing.verifier import VerifyOptions, verify_pack


def sign_pack_dir(
    pack_dir: Path,
    private_key_pem: str,
    key_id: str | None = None,
    out_path: Path | None = None,
) -> PackSignature:
    """Sign a pack directory and embed the signature into its manifest."""
    outcome = sign_pack(pack_dir, private_key_pem, key_id)
    write_signature(Path(pack_dir), outcome.signature, out_path)
    return outcome.signature


def verify_pack_dir(pack_dir: Path, opts: VerifyOptions | None = None) -> PackSignature:
    """Verify a pack directory using the supplied options."""
    return verify_pack(pack_dir, opts)


__all__ = [
    "CanonicalizedPack",
    "PackSignature",
    "SigningOutcome",
    "VerifyOptions",
    "canonicalize_pack_dir",
    "sign_pack",
    "sign_pack_dir",
    "verify_pack",
    "verify_pack_dir",
]

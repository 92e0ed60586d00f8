"""Ed25519 key loading and key id derivation.

Private keys are selected by PEM label:
- ``PRIVATE KEY``: standard PKCS#8 PEM
- ``ED25519 PRIVATE KEY``: same PKCS#8 structure under an algorithm-specific label

Both decode into one ``Ed25519PrivateKey``. Public keys are SubjectPublicKeyInfo
PEM (``PUBLIC KEY``).
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from packsign.errors import LoadKeyError

PKCS8_LABEL = "PRIVATE KEY"
ED25519_LABEL = "ED25519 PRIVATE KEY"

_PEM_RE = re.compile(
    r"-----BEGIN (?P<label>[A-Z0-9 ]+)-----\s*(?P<body>.*?)\s*-----END (?P=label)-----",
    re.DOTALL,
)


def _pem_block(pem: str) -> tuple[str, str]:
    match = _PEM_RE.search(pem)
    if match is None:
        raise LoadKeyError("failed to parse private key PEM: no PEM block found")
    return match.group("label"), match.group("body")


def _load_pkcs8_pem(pem: str) -> object:
    return serialization.load_pem_private_key(pem.encode("ascii"), password=None)


def _load_pkcs8_der_body(body: str) -> object:
    try:
        der = base64.b64decode("".join(body.split()), validate=True)
    except binascii.Error as e:
        raise LoadKeyError(f"failed to decode {ED25519_LABEL} body: {e}") from e
    return serialization.load_der_private_key(der, password=None)


_PRIVATE_KEY_LOADERS = {
    PKCS8_LABEL: lambda pem, body: _load_pkcs8_pem(pem),
    ED25519_LABEL: lambda pem, body: _load_pkcs8_der_body(body),
}


def load_signing_key(pem: str) -> Ed25519PrivateKey:
    """Load an Ed25519 private key from PEM text.

    Raises:
        LoadKeyError: On an unrecognized label, undecodable content, or a
            key that is not Ed25519
    """
    label, body = _pem_block(pem)
    loader = _PRIVATE_KEY_LOADERS.get(label)
    if loader is None:
        raise LoadKeyError(f"unsupported private key format: PEM label '{label}'")

    try:
        key = loader(pem, body)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise LoadKeyError(f"failed to load ed25519 private key from {label} PEM: {e}") from e

    if not isinstance(key, Ed25519PrivateKey):
        raise LoadKeyError(f"{label} PEM does not contain an ed25519 key")
    return key


def load_verifying_key(pem: str) -> Ed25519PublicKey:
    """Load an Ed25519 public key from SubjectPublicKeyInfo PEM.

    Raises:
        ValueError: If the PEM cannot be parsed or is not an Ed25519 key
    """
    try:
        key = serialization.load_pem_public_key(pem.encode("ascii"))
    except UnsupportedAlgorithm as e:
        raise ValueError(str(e)) from e
    if not isinstance(key, Ed25519PublicKey):
        raise ValueError("public key is not an ed25519 key")
    return key


def public_key_bytes(key: Ed25519PublicKey) -> bytes:
    """Raw 32-byte encoding of a public key."""
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def derive_key_id(public_key: bytes | Ed25519PublicKey) -> str:
    """Key id: hex of the first 16 bytes of SHA-256 over the raw public key."""
    if isinstance(public_key, Ed25519PublicKey):
        public_key = public_key_bytes(public_key)
    return hashlib.sha256(public_key).digest()[:16].hex()

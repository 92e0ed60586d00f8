"""Shared fixtures for pack signing tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

TEST_SECRET_KEY = bytes([0x42] * 32)

PACK_TOML = "[package]\nname = \"demo\"\n\n[metadata]\ndescription = \"demo\"\n"


def write_file(path: Path, contents: str | bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(contents, bytes):
        path.write_bytes(contents)
    else:
        path.write_text(contents, encoding="utf-8")


def private_pem(key: Ed25519PrivateKey) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def public_pem(key: Ed25519PrivateKey) -> str:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture
def signing_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.from_private_bytes(TEST_SECRET_KEY)


@pytest.fixture
def private_key_pem(signing_key: Ed25519PrivateKey) -> str:
    return private_pem(signing_key)


@pytest.fixture
def public_key_pem(signing_key: Ed25519PrivateKey) -> str:
    return public_pem(signing_key)


@pytest.fixture
def other_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.from_private_bytes(bytes([0x07] * 32))


@pytest.fixture
def pack_dir(tmp_path: Path) -> Path:
    """Minimal pack: manifest plus one flow."""
    root = tmp_path / "pack"
    write_file(root / "pack.toml", PACK_TOML)
    write_file(root / "flows" / "main.flow", "start: node")
    return root

"""Pack manifest signature store.

The pack manifest (``pack.toml`` or ``greentic-pack.toml``) carries its own
signature under ``[greentic.signature]``. Two views of the manifest exist:

- the persisted form, with the signature block, as written to disk
- the canonical form, with the signature block stripped and the remaining
  document re-serialized deterministically

Only the canonical form is ever hashed, so the signature never covers itself.
Both views are produced by pure transforms over the parsed document.
"""

from __future__ import annotations

import logging
import re
import tomllib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w

from packsign.errors import FilesystemError, ManifestNotFoundError, ManifestParseError

logger = logging.getLogger(__name__)

MANIFEST_CANDIDATES = ("pack.toml", "greentic-pack.toml")
SIGNATURE_SECTION = "greentic"
SIGNATURE_KEY = "signature"

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def format_timestamp(ts: datetime) -> str:
    """Format a timestamp as RFC3339 in UTC with a ``Z`` suffix."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")


def parse_timestamp(value: datetime | str) -> datetime:
    """Parse an RFC3339 timestamp into an aware UTC datetime.

    Fractional seconds beyond microsecond precision are truncated.
    """
    if isinstance(value, str):
        text = _FRACTION_RE.sub(r".\1", value.strip())
        value = datetime.fromisoformat(text.replace("Z", "+00:00").replace("z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PackSignature:
    """Signature record persisted in the pack manifest."""

    alg: str
    key_id: str
    created_at: datetime
    digest: str
    sig: str

    ED25519 = "ed25519"
    NONE = "none"

    @classmethod
    def unsigned(cls, digest: str) -> PackSignature:
        """Sentinel record returned when an unsigned pack is accepted."""
        return cls(
            alg=cls.NONE,
            key_id="unsigned",
            created_at=UNIX_EPOCH,
            digest=digest,
            sig="",
        )

    @property
    def is_unsigned(self) -> bool:
        return self.alg == self.NONE

    def to_dict(self) -> dict[str, str]:
        """Convert to the persisted dictionary form."""
        return {
            "alg": self.alg,
            "key_id": self.key_id,
            "created_at": format_timestamp(self.created_at),
            "digest": self.digest,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: Any) -> PackSignature:
        """Create from the persisted dictionary form.

        Raises:
            ManifestParseError: If the block is not a table or a field is
                missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ManifestParseError("invalid greentic.signature block: expected a table")

        fields: dict[str, str] = {}
        for name in ("alg", "key_id", "digest", "sig"):
            value = data.get(name)
            if not isinstance(value, str):
                raise ManifestParseError(
                    f"invalid greentic.signature block: field '{name}' must be a string"
                )
            fields[name] = value

        raw_created = data.get("created_at")
        if not isinstance(raw_created, (str, datetime)):
            raise ManifestParseError(
                "invalid greentic.signature block: field 'created_at' must be a timestamp"
            )
        try:
            created_at = parse_timestamp(raw_created)
        except ValueError as e:
            raise ManifestParseError(
                f"invalid greentic.signature block: bad created_at {raw_created!r}: {e}"
            ) from e

        return cls(created_at=created_at, **fields)


def find_manifest_path(pack_dir: Path) -> Path | None:
    """Return the first existing manifest candidate in ``pack_dir``."""
    for name in MANIFEST_CANDIDATES:
        candidate = pack_dir / name
        if candidate.exists():
            return candidate
    return None


def manifest_path(pack_dir: Path) -> Path:
    """Return the authoritative manifest path.

    Raises:
        ManifestNotFoundError: If no candidate exists
    """
    path = find_manifest_path(pack_dir)
    if path is None:
        raise ManifestNotFoundError(f"pack manifest not found in {pack_dir}")
    return path


def is_pack_manifest_path(path: Path | str) -> bool:
    """Check whether ``path`` names a recognized manifest file."""
    return Path(path).name in MANIFEST_CANDIDATES


def load_manifest(path: Path) -> dict[str, Any]:
    """Parse a manifest file into a TOML document."""
    try:
        source = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ManifestParseError(f"{path} is not valid UTF-8: {e}") from e
    except OSError as e:
        raise FilesystemError(f"failed to read {path}: {e}", path) from e

    try:
        return tomllib.loads(source)
    except tomllib.TOMLDecodeError as e:
        raise ManifestParseError(f"{path} is not valid TOML: {e}") from e


def dump_manifest(doc: dict[str, Any]) -> bytes:
    """Serialize a manifest document deterministically."""
    try:
        return tomli_w.dumps(doc).encode("utf-8")
    except TypeError as e:
        raise ManifestParseError(f"failed to serialise manifest: {e}") from e


def strip_signature(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``doc`` without the signature block.

    The enclosing section is dropped whenever nothing else is left in it,
    whether or not a signature was present.
    """
    section = doc.get(SIGNATURE_SECTION)
    if not isinstance(section, dict):
        return dict(doc)

    remaining = {k: v for k, v in section.items() if k != SIGNATURE_KEY}
    stripped = {}
    for key, value in doc.items():
        if key != SIGNATURE_SECTION:
            stripped[key] = value
        elif remaining:
            stripped[key] = remaining
    return stripped


def set_signature(doc: dict[str, Any], signature: PackSignature) -> dict[str, Any]:
    """Return a copy of ``doc`` with ``signature`` under the signature section."""
    section = doc.get(SIGNATURE_SECTION, {})
    if not isinstance(section, dict):
        raise ManifestParseError(f"[{SIGNATURE_SECTION}] must be a table")

    updated = dict(doc)
    updated[SIGNATURE_SECTION] = {**section, SIGNATURE_KEY: signature.to_dict()}
    return updated


def signature_from_doc(doc: dict[str, Any]) -> PackSignature | None:
    """Extract the signature record from a parsed manifest, if any."""
    if SIGNATURE_SECTION not in doc:
        return None

    section = doc[SIGNATURE_SECTION]
    if not isinstance(section, dict):
        raise ManifestParseError(f"[{SIGNATURE_SECTION}] must be a table")

    if SIGNATURE_KEY not in section:
        return None

    return PackSignature.from_dict(section[SIGNATURE_KEY])


def read_manifest_without_signature(path: Path) -> bytes:
    """Return the canonical manifest bytes with the signature block removed."""
    return dump_manifest(strip_signature(load_manifest(path)))


def read_signature(pack_dir: Path) -> PackSignature | None:
    """Read the signature recorded in the pack manifest.

    Returns:
        The signature, or None when the manifest carries no signature block

    Raises:
        ManifestNotFoundError: If the pack has no manifest
        ManifestParseError: If the manifest or signature block is invalid
    """
    return signature_from_doc(load_manifest(manifest_path(pack_dir)))


def write_signature(
    pack_dir: Path,
    signature: PackSignature,
    out_path: Path | None = None,
) -> Path:
    """Embed ``signature`` into the pack manifest.

    Args:
        pack_dir: Pack root containing the manifest
        signature: Signature record to store
        out_path: Write the updated manifest here instead of in place

    Returns:
        Path of the written manifest
    """
    source = manifest_path(pack_dir)
    serialized = dump_manifest(set_signature(load_manifest(source), signature))

    target = out_path or source
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"failed to create directory {target.parent}: {e}", target.parent) from e

    try:
        target.write_bytes(serialized)
    except OSError as e:
        raise FilesystemError(f"failed to write {target}: {e}", target) from e

    logger.info("Wrote signature for key %s to %s", signature.key_id, target)
    return target

"""Tests for the manifest signature store."""

from __future__ import annotations

import tomllib
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import PACK_TOML, write_file
from packsign.errors import ManifestNotFoundError, ManifestParseError
from packsign.manifest import (
    UNIX_EPOCH,
    PackSignature,
    find_manifest_path,
    format_timestamp,
    is_pack_manifest_path,
    manifest_path,
    parse_timestamp,
    read_manifest_without_signature,
    read_signature,
    set_signature,
    strip_signature,
    write_signature,
)


def make_signature(**overrides) -> PackSignature:
    values = {
        "alg": "ed25519",
        "key_id": "ab" * 16,
        "created_at": datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        "digest": "sha256:" + "0" * 64,
        "sig": "A" * 86,
    }
    values.update(overrides)
    return PackSignature(**values)


class TestPackSignature:
    """Test the PackSignature record."""

    def test_to_dict(self):
        """Test persisted dictionary form."""
        data = make_signature().to_dict()

        assert data == {
            "alg": "ed25519",
            "key_id": "ab" * 16,
            "created_at": "2024-05-01T12:30:00Z",
            "digest": "sha256:" + "0" * 64,
            "sig": "A" * 86,
        }

    def test_from_dict(self):
        """Test parsing the persisted form."""
        signature = PackSignature.from_dict(make_signature().to_dict())

        assert signature == make_signature()

    def test_from_dict_native_datetime(self):
        """Test an unquoted TOML datetime is accepted."""
        data = make_signature().to_dict()
        data["created_at"] = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

        assert PackSignature.from_dict(data).created_at == make_signature().created_at

    def test_from_dict_missing_field(self):
        """Test a missing field is a parse error."""
        data = make_signature().to_dict()
        del data["sig"]

        with pytest.raises(ManifestParseError, match="sig"):
            PackSignature.from_dict(data)

    def test_from_dict_bad_timestamp(self):
        """Test an unparseable timestamp is a parse error."""
        data = make_signature().to_dict()
        data["created_at"] = "yesterday"

        with pytest.raises(ManifestParseError, match="created_at"):
            PackSignature.from_dict(data)

    def test_from_dict_not_a_table(self):
        """Test a non-table signature block is a parse error."""
        with pytest.raises(ManifestParseError):
            PackSignature.from_dict("ed25519")

    def test_unsigned_sentinel(self):
        """Test the unsigned sentinel record."""
        signature = PackSignature.unsigned("sha256:abc")

        assert signature.alg == "none"
        assert signature.key_id == "unsigned"
        assert signature.created_at == UNIX_EPOCH
        assert signature.sig == ""
        assert signature.is_unsigned


class TestTimestamps:
    """Test RFC3339 timestamp handling."""

    def test_format_utc(self):
        """Test UTC formatting uses a Z suffix."""
        assert format_timestamp(UNIX_EPOCH) == "1970-01-01T00:00:00Z"

    def test_format_converts_offset(self):
        """Test non-UTC timestamps are converted."""
        ts = datetime.fromisoformat("2024-05-01T14:30:00+02:00")

        assert format_timestamp(ts) == "2024-05-01T12:30:00Z"

    def test_parse_nanoseconds_truncated(self):
        """Test fractional seconds beyond microseconds are truncated."""
        ts = parse_timestamp("2024-05-01T12:30:00.123456789Z")

        assert ts == datetime(2024, 5, 1, 12, 30, 0, 123456, tzinfo=timezone.utc)


class TestManifestLocation:
    """Test manifest discovery."""

    def test_first_candidate_wins(self, tmp_path: Path):
        """Test pack.toml takes precedence over greentic-pack.toml."""
        write_file(tmp_path / "greentic-pack.toml", PACK_TOML)
        assert find_manifest_path(tmp_path) == tmp_path / "greentic-pack.toml"

        write_file(tmp_path / "pack.toml", PACK_TOML)
        assert find_manifest_path(tmp_path) == tmp_path / "pack.toml"

    def test_not_found(self, tmp_path: Path):
        """Test a missing manifest raises ManifestNotFoundError."""
        assert find_manifest_path(tmp_path) is None
        with pytest.raises(ManifestNotFoundError):
            manifest_path(tmp_path)
        with pytest.raises(ManifestNotFoundError):
            read_signature(tmp_path)

    def test_is_pack_manifest_path(self):
        """Test manifest filename recognition."""
        assert is_pack_manifest_path(Path("pack.toml"))
        assert is_pack_manifest_path("sub/greentic-pack.toml")
        assert not is_pack_manifest_path(Path("pack.yaml"))


class TestSignatureTransforms:
    """Test the pure strip/set transforms."""

    def test_strip_removes_empty_section(self):
        """Test the section goes away when only the signature was in it."""
        doc = {"package": {"name": "demo"}, "greentic": {"signature": {"alg": "ed25519"}}}

        assert strip_signature(doc) == {"package": {"name": "demo"}}
        assert "greentic" in doc

    def test_strip_keeps_other_section_keys(self):
        """Test sibling keys in the section survive."""
        doc = {"greentic": {"channel": "stable", "signature": {"alg": "ed25519"}}}

        assert strip_signature(doc) == {"greentic": {"channel": "stable"}}

    def test_strip_drops_empty_section_without_signature(self):
        """Test an empty section is dropped even when nothing was signed."""
        doc = {"package": {"name": "demo"}, "greentic": {}}

        assert strip_signature(doc) == {"package": {"name": "demo"}}

    def test_strip_without_signature(self):
        """Test stripping an unsigned document is a no-op."""
        doc = {"package": {"name": "demo"}, "greentic": {"channel": "stable"}}

        assert strip_signature(doc) == doc

    def test_set_signature(self):
        """Test inserting a signature returns a new document."""
        doc = {"package": {"name": "demo"}}

        updated = set_signature(doc, make_signature())

        assert updated["greentic"]["signature"] == make_signature().to_dict()
        assert "greentic" not in doc

    def test_set_signature_rejects_non_table_section(self):
        """Test a scalar [greentic] value is a parse error."""
        with pytest.raises(ManifestParseError):
            set_signature({"greentic": "nope"}, make_signature())


class TestReadWrite:
    """Test reading and writing signatures on disk."""

    def test_read_unsigned(self, pack_dir: Path):
        """Test an unsigned manifest yields None."""
        assert read_signature(pack_dir) is None

    def test_write_then_read(self, pack_dir: Path):
        """Test a written signature reads back unchanged."""
        signature = make_signature()

        written = write_signature(pack_dir, signature)

        assert written == pack_dir / "pack.toml"
        assert read_signature(pack_dir) == signature
        doc = tomllib.loads((pack_dir / "pack.toml").read_text(encoding="utf-8"))
        assert doc["package"] == {"name": "demo"}
        assert doc["greentic"]["signature"]["digest"] == signature.digest

    def test_write_replaces_existing(self, pack_dir: Path):
        """Test a second write replaces the previous block."""
        write_signature(pack_dir, make_signature(sig="A" * 86))
        write_signature(pack_dir, make_signature(sig="B" * 86))

        assert read_signature(pack_dir).sig == "B" * 86

    def test_write_to_alternate_path(self, pack_dir: Path, tmp_path: Path):
        """Test --out style writes leave the original manifest untouched."""
        out = tmp_path / "dist" / "nested" / "pack.toml"

        written = write_signature(pack_dir, make_signature(), out)

        assert written == out
        assert out.exists()
        assert read_signature(pack_dir) is None
        assert (pack_dir / "pack.toml").read_text(encoding="utf-8") == PACK_TOML

    def test_read_invalid_block(self, pack_dir: Path):
        """Test a malformed signature block is a parse error."""
        write_file(pack_dir / "pack.toml", PACK_TOML + "\n[greentic.signature]\nalg = 1\n")

        with pytest.raises(ManifestParseError):
            read_signature(pack_dir)

    def test_read_non_table_section(self, pack_dir: Path):
        """Test a scalar greentic key is a parse error."""
        write_file(pack_dir / "pack.toml", 'greentic = "x"\n' + PACK_TOML)

        with pytest.raises(ManifestParseError):
            read_signature(pack_dir)

    def test_strip_is_idempotent_across_writes(self, pack_dir: Path):
        """Test strip -> write -> strip reproduces the same bytes."""
        manifest = pack_dir / "pack.toml"
        first = read_manifest_without_signature(manifest)

        write_signature(pack_dir, make_signature())
        second = read_manifest_without_signature(manifest)

        write_signature(pack_dir, make_signature(sig="C" * 86))
        third = read_manifest_without_signature(manifest)

        assert first == second == third
        assert b"signature" not in first

    def test_strip_idempotent_with_section_siblings(self, pack_dir: Path):
        """Test idempotency when the section carries other keys."""
        write_file(pack_dir / "pack.toml", PACK_TOML + '\n[greentic]\nchannel = "stable"\n')
        manifest = pack_dir / "pack.toml"
        first = read_manifest_without_signature(manifest)

        write_signature(pack_dir, make_signature())

        assert read_manifest_without_signature(manifest) == first
        assert b'channel = "stable"' in first

    def test_strip_idempotent_with_empty_section(self, pack_dir: Path):
        """Test an empty [greentic] header is dropped before and after signing."""
        manifest = pack_dir / "pack.toml"
        write_file(manifest, '[package]\nname = "demo"\n\n[greentic]\n')
        first = read_manifest_without_signature(manifest)

        write_signature(pack_dir, make_signature())
        second = read_manifest_without_signature(manifest)

        assert first == second
        assert b"greentic" not in first

"""Canonical byte stream of a pack directory.

Design decisions:
- Entries sorted by forward-slash relative path, never by walk order
- Header per entry: ``PATH\\0<path>\\nLEN\\0<byte-length>\\n`` then raw bytes
- ``.git`` and ``target`` segments and ``.DS_Store`` files are always skipped;
  ``.packignore`` patterns add to those rules and cannot re-include them
- Manifest files are hashed without their signature block
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import pathspec

from packsign.errors import FilesystemError, PathEncodingError
from packsign.manifest import is_pack_manifest_path, read_manifest_without_signature

logger = logging.getLogger(__name__)

IGNORE_FILENAME = ".packignore"
SKIPPED_SEGMENTS = frozenset({".git", "target"})
SKIPPED_FILENAMES = frozenset({".DS_Store"})


@dataclass(frozen=True)
class CanonicalEntry:
    """A tracked file: normalized relative path and raw content."""

    rel_path: str
    contents: bytes

    def header(self) -> bytes:
        return f"PATH\0{self.rel_path}\nLEN\0{len(self.contents)}\n".encode("utf-8")


@dataclass(frozen=True)
class CanonicalizedPack:
    """Canonical bytes of a pack and their SHA-256 digest."""

    bytes: bytes
    digest_hex: str
    entries: tuple[str, ...] = field(default_factory=tuple)

    @property
    def digest(self) -> str:
        """Digest in ``sha256:<hex>`` form."""
        return f"sha256:{self.digest_hex}"


def should_skip(rel_parts: tuple[str, ...]) -> bool:
    """Built-in skip rules, applied before any ``.packignore`` pattern."""
    if any(part in SKIPPED_SEGMENTS for part in rel_parts):
        return True
    return bool(rel_parts) and rel_parts[-1] in SKIPPED_FILENAMES


def normalize_path(rel_parts: tuple[str, ...]) -> str:
    """Join path segments with ``/``, rejecting anything not valid Unicode text."""
    segments = []
    for part in rel_parts:
        if part in ("", "."):
            continue
        try:
            part.encode("utf-8")
        except UnicodeEncodeError as e:
            raise PathEncodingError(
                f"path {os.path.join(*rel_parts)!r} is not valid UTF-8"
            ) from e
        segments.append(part)
    if not segments:
        raise PathEncodingError("empty relative path cannot be represented")
    return "/".join(segments)


class _IgnoreRules:
    """Stack of ``.packignore`` specs keyed by the directory that declared them."""

    def __init__(self) -> None:
        self._specs: dict[tuple[str, ...], pathspec.GitIgnoreSpec] = {}

    def load(self, dir_path: Path, rel_parts: tuple[str, ...]) -> None:
        ignore_file = dir_path / IGNORE_FILENAME
        if not ignore_file.is_file():
            return
        try:
            lines = ignore_file.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            raise FilesystemError(f"failed to read {ignore_file}: {e}", ignore_file) from e
        self._specs[rel_parts] = pathspec.GitIgnoreSpec.from_lines(lines)

    def is_ignored(self, rel_parts: tuple[str, ...], is_dir: bool) -> bool:
        """The closest ``.packignore`` with a matching pattern decides."""
        for base in sorted(self._specs, key=len, reverse=True):
            if rel_parts[: len(base)] != base or len(rel_parts) == len(base):
                continue
            candidate = "/".join(rel_parts[len(base):])
            if is_dir:
                candidate += "/"
            result = self._specs[base].check_file(candidate)
            if result.include is not None:
                return result.include
        return False


def _collect_entries(root: Path) -> list[CanonicalEntry]:
    entries: list[CanonicalEntry] = []
    rules = _IgnoreRules()
    # Directories on the current walk path, keyed by path, valued by (st_dev, st_ino)
    active: dict[str, tuple[int, int]] = {}

    def on_error(error: OSError) -> None:
        raise FilesystemError(
            f"failed to walk pack directory: {error}", error.filename or root
        ) from error

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=True):
        dir_path = Path(dirpath)
        rel_dir = dir_path.relative_to(root).parts

        try:
            stat = dir_path.stat()
        except OSError as e:
            raise FilesystemError(f"failed to stat {dir_path}: {e}", dir_path) from e
        identity = (stat.st_dev, stat.st_ino)
        ancestors = {k: v for k, v in active.items() if dirpath.startswith(k + os.sep)}
        if identity in ancestors.values():
            raise FilesystemError(f"symlink cycle detected at {dir_path}", dir_path)
        ancestors[dirpath] = identity
        active = ancestors

        rules.load(dir_path, rel_dir)

        kept_dirs = []
        for name in sorted(dirnames):
            rel = rel_dir + (name,)
            if should_skip(rel) or rules.is_ignored(rel, is_dir=True):
                continue
            kept_dirs.append(name)
        dirnames[:] = kept_dirs

        for name in filenames:
            rel = rel_dir + (name,)
            if should_skip(rel) or rules.is_ignored(rel, is_dir=False):
                continue

            abs_path = dir_path / name
            if not abs_path.is_file():
                if abs_path.is_symlink() and not abs_path.exists():
                    raise FilesystemError(f"broken symlink {abs_path}", abs_path)
                continue

            rel_path = normalize_path(rel)
            if is_pack_manifest_path(abs_path):
                contents = read_manifest_without_signature(abs_path)
            else:
                try:
                    contents = abs_path.read_bytes()
                except OSError as e:
                    raise FilesystemError(f"failed to read {abs_path}: {e}", abs_path) from e

            entries.append(CanonicalEntry(rel_path=rel_path, contents=contents))

    return entries


def canonicalize_pack_dir(pack_dir: Path) -> CanonicalizedPack:
    """Compute the canonical byte stream of a pack directory.

    Args:
        pack_dir: Pack root; resolved to an absolute, symlink-free path

    Returns:
        CanonicalizedPack with the concatenated bytes and their digest

    Raises:
        FilesystemError: If the root cannot be resolved or a file cannot be read
        PathEncodingError: If a tracked path is not valid Unicode text
        ManifestParseError: If a manifest file is not valid TOML
    """
    try:
        root = Path(pack_dir).resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise FilesystemError(f"failed to resolve pack directory {pack_dir}: {e}", pack_dir) from e
    if not root.is_dir():
        raise FilesystemError(f"pack directory {root} is not a directory", root)

    entries = _collect_entries(root)
    entries.sort(key=lambda e: e.rel_path)

    buffer = bytearray()
    for entry in entries:
        buffer += entry.header()
        buffer += entry.contents

    data = bytes(buffer)
    digest_hex = hashlib.sha256(data).hexdigest()
    logger.debug("Canonicalized %d entries in %s -> sha256:%s", len(entries), root, digest_hex)

    return CanonicalizedPack(
        bytes=data,
        digest_hex=digest_hex,
        entries=tuple(e.rel_path for e in entries),
    )

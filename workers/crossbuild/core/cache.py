"""
Cache keys and the default filesystem cache store.

The key is a SHA-256 over a canonical JSON payload of the lock file digest,
the target fields and the toolchain version.  Stores only ever see keys;
they never compare jobs with each other.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Protocol

from crossbuild.core.targets import TargetSpec

logger = logging.getLogger(__name__)

KEY_VERSION = "1"


@dataclass(frozen=True)
class CacheKey:
    """Opaque fingerprint for a (lock, target, toolchain) triple."""
    value: str

    def __str__(self) -> str:
        return self.value

    @property
    def short(self) -> str:
        return self.value[:12]


def _key_payload(lock_contents: bytes, spec: TargetSpec, toolchain_version: str) -> dict:
    target = asdict(spec)
    target["arch"] = spec.arch.value
    return {
        "key_version": KEY_VERSION,
        "lock_sha256": hashlib.sha256(lock_contents).hexdigest(),
        "target": target,
        "toolchain_version": toolchain_version,
    }


def derive_cache_key(lock_contents: bytes, spec: TargetSpec, toolchain_version: str) -> CacheKey:
    """Deterministic cache key. Pure: no I/O, no clock, no environment."""
    if isinstance(lock_contents, str):
        lock_contents = lock_contents.encode("utf-8")
    canonical = json.dumps(
        _key_payload(lock_contents, spec, toolchain_version),
        sort_keys=True,
        separators=(",", ":"),
    )
    return CacheKey(hashlib.sha256(canonical.encode("utf-8")).hexdigest())


def hash_file(path: Path) -> str:
    """SHA-256 of a file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


class CacheStore(Protocol):
    """External cache collaborator."""

    def get(self, key: CacheKey) -> Optional[Path]:
        ...

    def put(self, key: CacheKey, artifact: Path) -> Path:
        ...


class FileCacheStore:
    """
    Content-addressed directory cache.

    Layout::

        <root>/<key[:2]>/<key>/artifact
        <root>/<key[:2]>/<key>/manifest.json

    ``put`` writes into a temp directory and renames it into place, so two
    pipelines racing on the same key never expose a half-written entry.
    Whichever rename lands last wins; both carry the same content.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _entry(self, key: CacheKey) -> Path:
        return self.root / key.value[:2] / key.value

    def get(self, key: CacheKey) -> Optional[Path]:
        entry = self._entry(key)
        artifact = entry / "artifact"
        manifest_path = entry / "manifest.json"
        if not artifact.is_file() or not manifest_path.is_file():
            return None

        try:
            manifest = json.loads(manifest_path.read_text())
        except json.JSONDecodeError:
            logger.warning("Cache manifest for %s is not valid JSON; treating as miss", key.short)
            return None

        if manifest.get("key") != key.value or manifest.get("sha256") != hash_file(artifact):
            logger.warning("Cache entry %s failed verification; treating as miss", key.short)
            return None
        return artifact

    def put(self, key: CacheKey, artifact: Path) -> Path:
        entry = self._entry(key)
        entry.parent.mkdir(parents=True, exist_ok=True)

        staging = Path(tempfile.mkdtemp(prefix=f".{key.short}-", dir=entry.parent))
        try:
            shutil.copy2(artifact, staging / "artifact")
            manifest = {
                "key": key.value,
                "sha256": hash_file(staging / "artifact"),
                "size_bytes": (staging / "artifact").stat().st_size,
                "source_name": Path(artifact).name,
            }
            (staging / "manifest.json").write_text(
                json.dumps(manifest, indent=2, sort_keys=True) + "\n"
            )
            if entry.exists():
                # Same key means same content; keep the existing entry
                return entry / "artifact"
            try:
                os.replace(staging, entry)
            except OSError:
                # Lost the race to a concurrent writer of the same key
                if not entry.exists():
                    raise
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("Cached artifact under %s", key.short)
        return entry / "artifact"

"""Local directory implementation of the artifact store.

Mirrors the CCDB addressing on disk for offline jobs and tests::

    <root>/<remote_path>/<valid_from>_<valid_until>.onnx

The object whose ``[valid_from, valid_until)`` window contains the requested
timestamp is served; when several do, the one with the latest ``valid_from``
wins, as a newer upload supersedes an older one in CCDB.
"""

from pathlib import Path
import re
import shutil
from typing import Dict, List, Mapping, Optional, Tuple

import structlog

from .base import ArtifactStore, FetchError, resolve_timestamp

logger = structlog.get_logger("onnx_adapter.store.local")

_OBJECT_NAME = re.compile(r"^(\d+)_(\d+)\.onnx$")


class LocalArtifactStore(ArtifactStore):
    """Read-only artifact store backed by a directory tree."""

    def __init__(self, root: str):
        self.root = Path(root)

    def list_versions(self, remote_path: str) -> List[Tuple[int, int, Path]]:
        """All stored versions of ``remote_path`` as ``(valid_from, valid_until, file)``."""
        directory = self.root / remote_path.strip("/")
        if not directory.is_dir():
            return []

        versions = []
        for item in directory.iterdir():
            match = _OBJECT_NAME.match(item.name)
            if match and item.is_file():
                versions.append((int(match.group(1)), int(match.group(2)), item))
        return sorted(versions)

    def _resolve(self, remote_path: str, timestamp: int) -> Tuple[int, int, Path]:
        timestamp = resolve_timestamp(timestamp)
        candidates = [
            version for version in self.list_versions(remote_path)
            if version[0] <= timestamp < version[1]
        ]
        if not candidates:
            raise FetchError(f"No object for {remote_path} valid at {timestamp} under {self.root}")
        return max(candidates, key=lambda version: version[0])

    def retrieve_blob(
        self,
        remote_path: str,
        timestamp: int,
        destination: str,
        metadata: Optional[Mapping[str, str]] = None
    ) -> bool:
        _, _, source = self._resolve(remote_path, timestamp)
        target = Path(destination)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as e:
            raise FetchError(f"Could not copy {source} to {target}: {e}") from e

        logger.info("Blob retrieved", source=str(source), destination=str(target))
        return True

    def retrieve_headers(
        self,
        remote_path: str,
        metadata: Optional[Mapping[str, str]] = None,
        timestamp: int = -1
    ) -> Dict[str, str]:
        valid_from, valid_until, source = self._resolve(remote_path, timestamp)
        return {
            "Valid-From": str(valid_from),
            "Valid-Until": str(valid_until),
            "Content-Location": str(source),
        }

"""Model artifact fetcher.

Downloads the model valid at a timestamp and reads its validity window from
the object headers. Fetch failures are reported as ``success=False`` and
logged; nothing is retried here, retry policy belongs to the caller.
"""

from dataclasses import dataclass, field
import os
from pathlib import Path
import tempfile
from typing import Dict, Mapping, Optional, Tuple

import httpx
import structlog

from .base import ArtifactStore, FetchError, resolve_timestamp

logger = structlog.get_logger("onnx_adapter.store.fetcher")

VALID_FROM_HEADER = "Valid-From"
VALID_UNTIL_HEADER = "Valid-Until"


@dataclass
class FetchResult:
    """Outcome of a fetch."""

    success: bool
    local_file: str
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    if name in headers:
        return headers[name]
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _parse_unsigned(name: str, raw: str) -> Optional[int]:
    try:
        value = int(raw.strip(), 0)
    except ValueError:
        logger.warning("Unparsable timestamp header", header=name, value=raw)
        return None
    if value < 0:
        logger.warning("Negative timestamp header", header=name, value=raw)
        return None
    return value


def parse_validity(headers: Mapping[str, str]) -> Tuple[Optional[int], Optional[int]]:
    """Extract ``(valid_from, valid_until)`` from object headers.

    Missing or unparsable headers yield ``None`` for that bound. Values are
    parsed base-agnostically (``"100"``, ``"0x64"``, ``"0o144"``).
    """
    bounds = []
    for name in (VALID_FROM_HEADER, VALID_UNTIL_HEADER):
        raw = _header(headers, name)
        if raw is None:
            logger.info(f"{name} not found in metadata")
            bounds.append(None)
        else:
            bounds.append(_parse_unsigned(name, raw))
    return bounds[0], bounds[1]


class ArtifactFetcher:
    """Resolves a named, timestamped artifact to a local file."""

    def __init__(self, store: ArtifactStore):
        self.store = store

    def headers(
        self,
        remote_path: str,
        metadata: Optional[Mapping[str, str]] = None,
        timestamp: int = -1
    ) -> Dict[str, str]:
        """Headers of the object valid at ``timestamp``; raises ``FetchError``."""
        try:
            return self.store.retrieve_headers(remote_path, metadata or {}, timestamp)
        except httpx.HTTPError as e:
            raise FetchError(f"Could not retrieve headers of {remote_path}: {e}") from e

    def fetch(
        self,
        remote_path: str,
        timestamp: int,
        destination: str = "model.onnx",
        metadata: Optional[Mapping[str, str]] = None,
        staged: bool = False
    ) -> FetchResult:
        """Download ``remote_path`` as of ``timestamp`` into ``destination``.

        Headers are read before the blob is written, and both use the same
        concrete timestamp. With ``staged=True`` the blob goes to a new file
        beside ``destination`` (returned as ``local_file``) and ``destination``
        itself is left untouched; the caller moves or removes the staged file.
        """
        metadata = dict(metadata or {})
        timestamp = resolve_timestamp(timestamp)
        logger.info("Fetching model", remote_path=remote_path, timestamp=timestamp, destination=destination)

        local_file = destination
        try:
            headers = self.headers(remote_path, metadata, timestamp)
            if staged:
                local_file = _staging_file(destination)
            self.store.retrieve_blob(remote_path, timestamp, local_file, metadata)
        except (FetchError, httpx.HTTPError, OSError) as e:
            if local_file != destination and os.path.exists(local_file):
                os.unlink(local_file)
            logger.error("Model fetch failed", remote_path=remote_path, timestamp=timestamp, error=str(e))
            return FetchResult(success=False, local_file=destination, error=str(e))

        return FetchResult(success=True, local_file=local_file, headers=headers)


def _staging_file(destination: str) -> str:
    target = Path(destination)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".fetch")
    os.close(fd)
    return name

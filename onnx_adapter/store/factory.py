"""Artifact store factory.

Centralizes creation of concrete ``ArtifactStore`` backends so callers don't
depend on implementation details.
"""

from enum import Enum
from typing import Any
from urllib.parse import urlparse

import structlog

from .base import ArtifactStore
from .ccdb import CcdbStore
from .local import LocalArtifactStore

logger = structlog.get_logger("onnx_adapter.store.factory")


class ArtifactStoreType(Enum):
    """Supported artifact store types."""
    CCDB = "ccdb"
    LOCAL = "local"


def store_type_for_url(url: str) -> ArtifactStoreType:
    """Pick the backend type from a URL scheme."""
    scheme = urlparse(url).scheme.lower()
    if scheme in ("http", "https"):
        return ArtifactStoreType.CCDB
    if scheme in ("", "file"):
        return ArtifactStoreType.LOCAL
    raise ValueError(f"Unsupported artifact store URL: {url}")


def create_artifact_store(url: str, **kwargs: Any) -> ArtifactStore:
    """Create an artifact store for ``url``.

    Parameters
    - url: ``http(s)://`` for CCDB, ``file://`` or a plain path for a local mirror
    - kwargs: Backend options (``timeout``/``client`` for CCDB)
    """
    if not url:
        raise ValueError("Artifact store URL must not be empty")

    store_type = store_type_for_url(url)
    logger.debug("Creating artifact store", url=url, store_type=store_type.value)

    if store_type == ArtifactStoreType.CCDB:
        return CcdbStore(base_url=url, **kwargs)

    path = urlparse(url).path if url.startswith("file://") else url
    return LocalArtifactStore(path)

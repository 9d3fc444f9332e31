"""CCDB implementation of the artifact store.

Objects are addressed as ``{base_url}/{path}/{timestamp}[/{key}={value}...]``.
A GET on that URL redirects to the blob; a HEAD returns the object headers
(``Valid-From``, ``Valid-Until``, ``Content-MD5``, ...) without following the
redirect.

Downloads are streamed into a temporary file beside the destination and
renamed over it once complete, so an interrupted or corrupt download never
replaces a model file that is already in place.
"""

import base64
import hashlib
import os
from pathlib import Path
import tempfile
from typing import Dict, Mapping, Optional
from urllib.parse import quote

import httpx
import structlog

from ..common.config import DEFAULT_CCDB_URL
from .base import ArtifactStore, FetchError, resolve_timestamp

logger = structlog.get_logger("onnx_adapter.store.ccdb")


class CcdbStore(ArtifactStore):
    """CCDB REST client."""

    def __init__(
        self,
        base_url: str = DEFAULT_CCDB_URL,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None
    ):
        """Configure a CCDB client.

        Parameters
        - base_url: CCDB endpoint, e.g. ``http://alice-ccdb.cern.ch``
        - timeout: Seconds allowed per HTTP request
        - client: Pre-built ``httpx.Client`` (kept open on ``close``)
        """
        if not base_url:
            raise ValueError("CCDB base URL must not be empty")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def object_url(
        self,
        remote_path: str,
        timestamp: int,
        metadata: Optional[Mapping[str, str]] = None
    ) -> str:
        """Build the REST URL of the object valid at ``timestamp``."""
        url = f"{self.base_url}/{remote_path.strip('/')}/{resolve_timestamp(timestamp)}"
        for key, value in (metadata or {}).items():
            url += f"/{quote(str(key), safe='')}={quote(str(value), safe='')}"
        return url

    def retrieve_blob(
        self,
        remote_path: str,
        timestamp: int,
        destination: str,
        metadata: Optional[Mapping[str, str]] = None
    ) -> bool:
        url = self.object_url(remote_path, timestamp, metadata)
        target = Path(destination)

        logger.info("Retrieving blob", url=url, destination=str(target))

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".part")
        except OSError as e:
            raise FetchError(f"Could not prepare {target}: {e}") from e

        try:
            digest = hashlib.md5()
            with os.fdopen(fd, "wb") as tmp:
                with self.client.stream("GET", url, follow_redirects=True) as response:
                    if not response.is_success:
                        raise FetchError(f"CCDB returned {response.status_code} for {url}")
                    expected_md5 = _content_md5(response)
                    for chunk in response.iter_bytes():
                        tmp.write(chunk)
                        digest.update(chunk)

            if expected_md5 and not _md5_matches(expected_md5, digest.digest()):
                raise FetchError(f"Checksum mismatch for {url}: expected {expected_md5}, got {digest.hexdigest()}")

            os.replace(tmp_name, target)
        except httpx.HTTPError as e:
            raise FetchError(f"Could not retrieve {url}: {e}") from e
        except OSError as e:
            raise FetchError(f"Could not write {target}: {e}") from e
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.info("Blob retrieved", url=url, destination=str(target), md5=digest.hexdigest())
        return True

    def retrieve_headers(
        self,
        remote_path: str,
        metadata: Optional[Mapping[str, str]] = None,
        timestamp: int = -1
    ) -> Dict[str, str]:
        url = self.object_url(remote_path, timestamp, metadata)
        try:
            response = self.client.head(url, follow_redirects=False)
        except httpx.HTTPError as e:
            raise FetchError(f"Could not retrieve headers of {url}: {e}") from e

        if response.status_code >= 400:
            raise FetchError(f"CCDB returned {response.status_code} for {url}")

        return {
            key.decode("latin-1"): value.decode("latin-1")
            for key, value in response.headers.raw
        }


def _content_md5(response: httpx.Response) -> Optional[str]:
    for candidate in [response, *reversed(response.history)]:
        value = candidate.headers.get("Content-MD5")
        if value:
            return value.strip()
    return None


def _md5_matches(expected: str, digest: bytes) -> bool:
    # CCDB sends hex; RFC 1864 specifies base64.
    return expected.lower() == digest.hex() or expected == base64.b64encode(digest).decode("ascii")

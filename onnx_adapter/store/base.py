"""Base artifact store interface.

Defines the contract the adapter needs from a versioned blob store:
retrieve the object valid at a timestamp into a local file, and read the
object's headers (validity window, checksum, ...). All calls are blocking.

Timestamps are epoch milliseconds; a negative timestamp means "now".
"""

from abc import ABC, abstractmethod
import time
from typing import Dict, Mapping, Optional

from ..runtime.errors import OnnxAdapterError


class FetchError(OnnxAdapterError):
    """Artifact store unreachable, or path/timestamp not resolvable."""
    pass


class ArtifactStore(ABC):
    """Abstract base class for artifact stores."""

    @abstractmethod
    def retrieve_blob(
        self,
        remote_path: str,
        timestamp: int,
        destination: str,
        metadata: Optional[Mapping[str, str]] = None
    ) -> bool:
        """Download the object valid at ``timestamp`` to ``destination``.

        Returns ``True`` on success; raises ``FetchError`` otherwise.
        """
        pass

    @abstractmethod
    def retrieve_headers(
        self,
        remote_path: str,
        metadata: Optional[Mapping[str, str]] = None,
        timestamp: int = -1
    ) -> Dict[str, str]:
        """Return the headers of the object valid at ``timestamp``."""
        pass

    def close(self) -> None:
        """Release held resources. Default is a no-op."""

    def __enter__(self) -> "ArtifactStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def resolve_timestamp(timestamp: int) -> int:
    """Map negative timestamps to the current time in milliseconds."""
    if timestamp < 0:
        return int(time.time() * 1000)
    return int(timestamp)

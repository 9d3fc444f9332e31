"""Thread policy and shared-slot job detection.

Grid/analysis-train jobs run in slots shared with other payloads. The job
scheduler exports the slot's core count in an environment variable; whenever
that variable is present, the adapter runs onnxruntime single-threaded no
matter how many cores the slot declares.
"""

import os
from typing import Mapping, Optional

import structlog

from ..common.config import DEFAULT_SCHEDULER_ENV_VAR

logger = structlog.get_logger("onnx_adapter.environment")


class ThreadPolicy:
    """Intra-op thread count for the next session.

    ``0`` means "let onnxruntime decide". The policy is read when a session is
    built; changing it never alters an already-open session.
    """

    def __init__(
        self,
        active_threads: int = 0,
        scheduler_env_var: str = DEFAULT_SCHEDULER_ENV_VAR,
        environ: Optional[Mapping[str, str]] = None
    ):
        """Create a policy.

        Parameters
        - active_threads: Initial thread count (``0`` = runtime default)
        - scheduler_env_var: Variable marking a shared-slot job
        - environ: Environment mapping to inspect (default: ``os.environ``)
        """
        self.scheduler_env_var = scheduler_env_var
        self._environ = environ
        self.active_threads = 0
        self.set_active_threads(active_threads)

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def set_active_threads(self, threads: int) -> None:
        """Set the thread count used by the next load."""
        if threads < 0:
            raise ValueError(f"Thread count must be >= 0, got {threads}")
        self.active_threads = int(threads)

    def detect_constrained_environment(self) -> bool:
        """Force single-threaded execution when running in a shared job slot.

        Returns ``True`` if the scheduler variable is present (any value).
        """
        cores = self.environ.get(self.scheduler_env_var)
        if cores is None:
            logger.info("Not running in a shared-slot job", variable=self.scheduler_env_var)
            return False

        logger.info(
            "Shared-slot job detected, setting threads to 1",
            variable=self.scheduler_env_var,
            declared_cores=cores,
        )
        self.active_threads = 1
        return True

    def copy(self) -> "ThreadPolicy":
        return ThreadPolicy(self.active_threads, self.scheduler_env_var, self._environ)

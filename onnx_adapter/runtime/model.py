"""ONNX model adapter.

``OnnxModel`` ties together the model session, the thread policy, the
artifact store and evaluation. It is the object embedding applications hold:

    model = OnnxModel("model.onnx")
    scores = model.eval_model(features).unwrap()

    model.fetch_from_ccdb("Analysis/PID/TPC/ML", timestamp)
    if not model.validity.contains(timestamp):
        ...

Load, reload and evaluate on one instance must be serialized by the caller.
To evaluate the same model from several workers, give each worker its own
``clone()``: clones share the loaded handle, and a reload on one of them
builds a new handle without touching the others.
"""

from dataclasses import replace
import os
from typing import Any, Callable, Mapping, Optional, Sequence

import numpy as np
import structlog

from ..common.config import OnnxAdapterConfig, get_config
from ..common.metrics import MetricsCollector
from ..store.base import ArtifactStore
from ..store.factory import create_artifact_store
from ..store.fetcher import ArtifactFetcher, FetchResult, parse_validity
from .environment import ThreadPolicy
from .errors import LoadError
from .evaluator import EvalResult, evaluate_flat, evaluate_tensors
from .session import IODescriptor, ModelHandle, ModelSession, SessionConfig, ValidityWindow

logger = structlog.get_logger("onnx_adapter.model")


class OnnxModel:
    """A general-purpose adapter for ONNX models."""

    def __init__(
        self,
        path: Optional[str] = None,
        *,
        config: Optional[OnnxAdapterConfig] = None,
        store: Optional[ArtifactStore] = None,
        metrics: Optional[MetricsCollector] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        """Create the adapter and, if ``path`` is given, load it.

        Parameters
        - path: Local model file; falls back to ``ML_ONNX_MODEL_PATH`` when unset
        - config: Adapter configuration (default: read from the environment)
        - store: Artifact store (default: CCDB at ``config.ml_onnx_ccdb_url``)
        - metrics: Optional Prometheus collector
        - environ: Environment used for shared-slot detection (default: ``os.environ``)

        A failed initial load raises ``LoadError``. Shared-slot detection runs
        after the initial load, so it only affects later loads.
        """
        self.config = config or get_config()
        self.metrics = metrics
        self.thread_policy = ThreadPolicy(
            active_threads=self.config.ml_onnx_active_threads,
            scheduler_env_var=self.config.ml_onnx_scheduler_env_var,
            environ=environ,
        )
        self.session = ModelSession(
            thread_policy=self.thread_policy,
            base_config=SessionConfig(
                log_severity_level=self.config.ml_onnx_log_severity,
                providers=tuple(self.config.provider_list()),
            ),
        )
        self.ccdb_url = self.config.ml_onnx_ccdb_url
        self._store = store
        self._owns_store = False

        path = path if path is not None else self.config.ml_onnx_model_path
        if path:
            logger.info("Initializing ONNX model adapter", path=path)
            self.load(path)
            self.thread_policy.detect_constrained_environment()

    # Store

    @property
    def store(self) -> ArtifactStore:
        if self._store is None:
            self._store = create_artifact_store(self.ccdb_url, timeout=self.config.ml_onnx_http_timeout)
            self._owns_store = True
        return self._store

    @property
    def fetcher(self) -> ArtifactFetcher:
        return ArtifactFetcher(self.store)

    def set_ccdb_url(self, url: str) -> None:
        """Point the default store at another endpoint for subsequent fetches."""
        if not url:
            raise ValueError("CCDB URL must not be empty")
        self.ccdb_url = url
        if self._owns_store:
            self._store.close()
        self._store = None
        self._owns_store = False

    def close(self) -> None:
        if self._owns_store and self._store is not None:
            self._store.close()
            self._store = None
            self._owns_store = False

    def __enter__(self) -> "OnnxModel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Lifecycle

    def _tracked_load(self, load: Callable[[], ModelHandle]) -> ModelHandle:
        try:
            handle = load()
        except LoadError:
            if self.metrics:
                self.metrics.record_model_load("failure")
            raise
        if self.metrics:
            self.metrics.record_model_load("success", threads=handle.config.intra_op_num_threads)
        return handle

    def load(self, path: str) -> ModelHandle:
        """Load a local model file; the validity window is left as is."""
        return self._tracked_load(lambda: self.session.load(path))

    def reload(self) -> ModelHandle:
        """Rebuild the session from ``model_path`` with the current thread policy."""
        return self._tracked_load(self.session.reload)

    reset_session = reload

    def fetch(
        self,
        remote_path: str,
        timestamp: int,
        path_to: str = "model.onnx",
        metadata: Optional[Mapping[str, str]] = None,
        staged: bool = False
    ) -> FetchResult:
        result = self.fetcher.fetch(remote_path, timestamp, path_to, metadata, staged=staged)
        if self.metrics:
            self.metrics.record_fetch("success" if result.success else "failure")
        return result

    def fetch_from_ccdb(
        self,
        remote_path: str,
        timestamp: int,
        path_to: str = "model.onnx",
        metadata: Optional[Mapping[str, str]] = None
    ) -> bool:
        """Fetch the model valid at ``timestamp`` and make it the active model.

        Returns ``False`` if the store could not deliver it; the current model
        stays active. Raises ``LoadError`` if the fetched file does not load,
        in which case the model and validity window are unchanged as well.

        The download is staged beside ``path_to`` and only moved over it once
        the new session is built, so the file a later ``reload`` reads always
        matches the committed validity window.
        """
        result = self.fetch(remote_path, timestamp, path_to, metadata, staged=True)
        if not result.success:
            return False

        staged_file = result.local_file
        try:
            valid_from, valid_until = parse_validity(result.headers)
            self.thread_policy.detect_constrained_environment()
            validity = self.session.validity.update(valid_from, valid_until)
            handle = self._tracked_load(lambda: self.session.prepare(path_to, source=staged_file))
            try:
                os.replace(staged_file, path_to)
            except OSError as e:
                logger.error("Could not move fetched model into place", path=path_to, error=str(e))
                return False
            self.session.commit(handle, validity)
        finally:
            if os.path.exists(staged_file):
                os.unlink(staged_file)

        logger.info(
            "Model fetched",
            remote_path=remote_path,
            valid_from=self.validity_from,
            valid_until=self.validity_until,
        )
        return True

    def download_to_file(
        self,
        remote_path: str,
        timestamp: int,
        path_to: str = "model.onnx",
        metadata: Optional[Mapping[str, str]] = None
    ) -> bool:
        """Download the model without loading it; adapter state is unchanged."""
        result = self.fetch(remote_path, timestamp, path_to, metadata)
        if result.success:
            valid_from, valid_until = parse_validity(result.headers)
            logger.info(
                "Model downloaded",
                local_file=result.local_file,
                valid_from=valid_from,
                valid_until=valid_until,
            )
        return result.success

    def clone(self) -> "OnnxModel":
        """New adapter sharing the loaded handle, window and thread count.

        An injected store is shared; a store this adapter created itself is
        not, so the clone builds its own and either can be closed alone.
        """
        shared_store = None if self._owns_store else self._store
        other = OnnxModel("", config=self.config, store=shared_store, metrics=self.metrics)
        other.ccdb_url = self.ccdb_url
        other.thread_policy = self.thread_policy.copy()
        other.session.thread_policy = other.thread_policy
        other.session.base_config = self.session.base_config
        other.session.handle = self.session.handle
        other.session.model_path = self.session.model_path
        other.session.validity = self.session.validity
        return other

    # Evaluation

    def _record(self, handle: ModelHandle, result: EvalResult) -> EvalResult:
        if self.metrics:
            self.metrics.record_evaluation(handle.name, "success" if result.ok else "failure", result.duration)
        return result

    def evaluate_tensors(self, tensors: Any) -> EvalResult:
        """Evaluate arrays given in declared input order or keyed by input name."""
        handle = self.session.require_handle()
        return self._record(handle, evaluate_tensors(handle, tensors))

    def evaluate_flat(
        self,
        values: Sequence[float],
        extra_inputs: Optional[Mapping[str, np.ndarray]] = None
    ) -> EvalResult:
        """Evaluate a flat buffer of ``rows * input_dimensions`` values."""
        handle = self.session.require_handle()
        return self._record(handle, evaluate_flat(handle, values, extra_inputs))

    def eval_model(self, inputs: Any, extra_inputs: Optional[Mapping[str, np.ndarray]] = None) -> EvalResult:
        """Evaluate prepared tensors or a flat buffer.

        A mapping, a sequence of arrays or an array of rank >= 2 is treated as
        prepared tensors; anything one-dimensional as a flat buffer.
        """
        if isinstance(inputs, Mapping):
            return self.evaluate_tensors(inputs)
        if isinstance(inputs, np.ndarray):
            if inputs.ndim >= 2:
                return self.evaluate_tensors([inputs])
            return self.evaluate_flat(inputs, extra_inputs)

        inputs = list(inputs)
        if inputs and all(isinstance(item, np.ndarray) for item in inputs):
            return self.evaluate_tensors(inputs)
        return self.evaluate_flat(inputs, extra_inputs)

    # Getters & setters

    def set_active_threads(self, threads: int) -> None:
        """Thread count for the next load or reload."""
        self.thread_policy.set_active_threads(threads)

    def configure_session(self, **changes: Any) -> SessionConfig:
        """Change session options (e.g. ``providers``) for the next load or reload."""
        if "intra_op_num_threads" in changes:
            raise ValueError("Use set_active_threads to change the thread count")
        self.session.base_config = replace(self.session.base_config, **changes)
        return self.session.base_config

    @property
    def active_threads(self) -> int:
        return self.thread_policy.active_threads

    @property
    def handle(self) -> Optional[ModelHandle]:
        return self.session.handle

    @property
    def session_config(self) -> SessionConfig:
        """Config of the open session (not of the next load)."""
        return self.session.require_handle().config

    @property
    def io(self) -> IODescriptor:
        return self.session.io

    @property
    def model_path(self) -> str:
        return self.session.model_path

    @property
    def input_dimensions(self) -> int:
        return self.session.input_dimensions

    @property
    def output_dimensions(self) -> int:
        return self.session.output_dimensions

    @property
    def validity(self) -> ValidityWindow:
        return self.session.validity

    @property
    def validity_from(self) -> int:
        return self.session.validity_from

    @property
    def validity_until(self) -> int:
        return self.session.validity_until

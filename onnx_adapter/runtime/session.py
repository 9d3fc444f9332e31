"""Model session lifecycle.

A ``ModelSession`` owns the currently loaded ``ModelHandle``: the
``onnxruntime.InferenceSession``, the immutable ``SessionConfig`` it was built
with, and the ``IODescriptor`` captured from it. Handles are never mutated;
``load``/``reload`` build a complete new handle and swap it in only once it is
fully initialised, so a failed load leaves the previous model usable.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import onnxruntime as ort
import structlog

from .environment import ThreadPolicy
from .errors import LoadError
from .shape import format_shape

logger = structlog.get_logger("onnx_adapter.session")

UNSET = -1


@dataclass(frozen=True)
class SessionConfig:
    """Options an ``InferenceSession`` is built with.

    Frozen: a thread-count change produces a new config for the next load
    instead of mutating live runtime state.
    """

    intra_op_num_threads: int = 0
    log_severity_level: int = 2
    log_id: str = "onnx-model"
    providers: Tuple[str, ...] = ("CPUExecutionProvider",)

    def with_threads(self, threads: int) -> "SessionConfig":
        return replace(self, intra_op_num_threads=threads)

    def to_session_options(self) -> ort.SessionOptions:
        options = ort.SessionOptions()
        options.intra_op_num_threads = self.intra_op_num_threads
        options.log_severity_level = self.log_severity_level
        options.logid = self.log_id
        return options


@dataclass(frozen=True)
class IODescriptor:
    """Declared input/output names and shapes of a loaded model.

    Symbolic or unknown dimensions are stored as ``-1``.
    """

    input_names: Tuple[str, ...]
    input_shapes: Tuple[Tuple[int, ...], ...]
    output_names: Tuple[str, ...]
    output_shapes: Tuple[Tuple[int, ...], ...]

    def __post_init__(self):
        if len(self.input_names) != len(self.input_shapes):
            raise ValueError("Input names and shapes differ in length")
        if len(self.output_names) != len(self.output_shapes):
            raise ValueError("Output names and shapes differ in length")

    @classmethod
    def from_session(cls, session: ort.InferenceSession) -> "IODescriptor":
        inputs = session.get_inputs()
        outputs = session.get_outputs()
        return cls(
            input_names=tuple(node.name for node in inputs),
            input_shapes=tuple(_normalize_shape(node.shape) for node in inputs),
            output_names=tuple(node.name for node in outputs),
            output_shapes=tuple(_normalize_shape(node.shape) for node in outputs),
        )

    @property
    def input_dimensions(self) -> int:
        """Per-row width of the first input (``-1`` if not declared)."""
        return _row_width(self.input_shapes)

    @property
    def output_dimensions(self) -> int:
        """Per-row width of the first output (``-1`` if not declared)."""
        return _row_width(self.output_shapes)


@dataclass(frozen=True)
class ValidityWindow:
    """Advisory validity range of a fetched artifact, ``-1`` when unset."""

    valid_from: int = UNSET
    valid_until: int = UNSET

    def update(self, valid_from: Optional[int], valid_until: Optional[int]) -> "ValidityWindow":
        """Return a window with each provided bound replaced."""
        return ValidityWindow(
            valid_from=self.valid_from if valid_from is None else valid_from,
            valid_until=self.valid_until if valid_until is None else valid_until,
        )

    def contains(self, timestamp: int) -> bool:
        """True if ``timestamp`` lies in ``[valid_from, valid_until)``; unset bounds are open."""
        if self.valid_from != UNSET and timestamp < self.valid_from:
            return False
        if self.valid_until != UNSET and timestamp >= self.valid_until:
            return False
        return True


@dataclass(frozen=True)
class ModelHandle:
    """A loaded, ready-to-run model. Immutable and safe to share by reference."""

    path: str
    session: ort.InferenceSession = field(repr=False, compare=False)
    config: SessionConfig
    io: IODescriptor

    @property
    def name(self) -> str:
        return Path(self.path).stem


def _normalize_shape(shape: Optional[Sequence]) -> Tuple[int, ...]:
    if shape is None:
        return ()
    return tuple(dim if isinstance(dim, int) and dim >= 0 else UNSET for dim in shape)


def _row_width(shapes: Sequence[Tuple[int, ...]]) -> int:
    if not shapes or len(shapes[0]) < 2:
        return UNSET
    return shapes[0][1]


def open_handle(path: str, config: SessionConfig) -> ModelHandle:
    """Build a new ``ModelHandle`` for ``path``.

    Raises ``LoadError`` if the file is missing or onnxruntime rejects it.
    """
    if not path:
        raise LoadError("No model path given")
    if not Path(path).is_file():
        raise LoadError(f"Model file not found: {path}")

    ort.set_default_logger_severity(config.log_severity_level)
    try:
        session = ort.InferenceSession(
            str(path),
            sess_options=config.to_session_options(),
            providers=list(config.providers),
        )
    except Exception as e:
        raise LoadError(f"onnxruntime could not load {path}: {e}") from e

    io = IODescriptor.from_session(session)
    if not io.input_names or not io.output_names:
        raise LoadError(f"Model {path} declares no inputs or no outputs")

    return ModelHandle(path=str(path), session=session, config=config, io=io)


def _log_nodes(io: IODescriptor) -> None:
    logger.info("Input nodes", nodes=_describe(io.input_names, io.input_shapes))
    logger.info("Output nodes", nodes=_describe(io.output_names, io.output_shapes))


def _describe(names: Sequence[str], shapes: Sequence[Tuple[int, ...]]) -> List[str]:
    return [f"{name} : {format_shape(shape)}" for name, shape in zip(names, shapes)]


class ModelSession:
    """Holds the active model handle, its validity window and the thread policy.

    Not safe for concurrent ``load``/``reload`` against ``evaluate`` on the same
    instance; callers serialize those. An evaluation that already obtained
    ``handle`` finishes on that handle even if a reload swaps in a new one.
    """

    def __init__(
        self,
        thread_policy: Optional[ThreadPolicy] = None,
        base_config: Optional[SessionConfig] = None
    ):
        self.thread_policy = thread_policy or ThreadPolicy()
        self.base_config = base_config or SessionConfig()
        self.handle: Optional[ModelHandle] = None
        self.validity = ValidityWindow()
        self.model_path = ""

    @property
    def loaded(self) -> bool:
        return self.handle is not None

    def build_config(self) -> SessionConfig:
        """Session config for the next load, taken from the current thread policy."""
        return self.base_config.with_threads(self.thread_policy.active_threads)

    def prepare(self, path: str, source: Optional[str] = None) -> ModelHandle:
        """Build a handle for ``path`` without activating it.

        ``source`` is the file actually read, for a model staged elsewhere
        before it is moved to ``path``.
        """
        source = source or path
        logger.info("Loading ONNX model", path=path, source=source)
        try:
            handle = open_handle(source, self.build_config())
        except LoadError as e:
            logger.error("Failed to load model", path=path, error=str(e))
            raise

        _log_nodes(handle.io)
        return replace(handle, path=str(path))

    def commit(self, handle: ModelHandle, validity: Optional[ValidityWindow] = None) -> ModelHandle:
        """Make ``handle`` the active model, together with ``validity`` if given."""
        self.handle = handle
        self.model_path = handle.path
        if validity is not None:
            self.validity = validity

        logger.info(
            "Model initialized",
            path=handle.path,
            intra_op_num_threads=handle.config.intra_op_num_threads,
        )
        return handle

    def load(self, path: str, validity: Optional[ValidityWindow] = None) -> ModelHandle:
        """Load ``path`` and make it the active model.

        ``validity`` replaces the current window only if the load succeeds.
        """
        return self.commit(self.prepare(path), validity)

    def reload(self) -> ModelHandle:
        """Rebuild the session from the stored path with the current thread policy."""
        if not self.model_path:
            raise LoadError("No model path to reload from")
        return self.load(self.model_path)

    def require_handle(self) -> ModelHandle:
        if self.handle is None:
            raise LoadError("No model loaded")
        return self.handle

    @property
    def io(self) -> IODescriptor:
        return self.require_handle().io

    @property
    def input_dimensions(self) -> int:
        return self.io.input_dimensions

    @property
    def output_dimensions(self) -> int:
        return self.io.output_dimensions

    @property
    def validity_from(self) -> int:
        return self.validity.valid_from

    @property
    def validity_until(self) -> int:
        return self.validity.valid_until

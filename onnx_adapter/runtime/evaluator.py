"""Model evaluation.

Two entry points share one execution path:
- ``evaluate_tensors``: caller-built arrays, one per declared input
- ``evaluate_flat``: a flat numeric buffer reshaped to ``(rows, width)``
  where ``width`` is the per-row width of the first declared input

Runtime failures come back as an ``EvalResult`` carrying an ``EvalError``
rather than an empty output, so "evaluation failed" and "evaluation returned
zeros" cannot be confused. Input that cannot fit the declared shapes raises
``ShapeError`` before anything is submitted.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np
import structlog

from .errors import EvalError, ShapeError
from .session import ModelHandle
from .shape import format_shape

logger = structlog.get_logger("onnx_adapter.evaluator")

PreparedTensors = Union[Mapping[str, np.ndarray], Sequence[np.ndarray]]


@dataclass
class EvalResult:
    """Outcome of one evaluation: the first output, or the error."""

    output: Optional[np.ndarray] = None
    outputs: Dict[str, np.ndarray] = field(default_factory=dict)
    error: Optional[EvalError] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> np.ndarray:
        """Return the first output or raise the ``EvalError``."""
        if self.error is not None:
            raise self.error
        return self.output


def _bind_by_name(names: Sequence[str], tensors: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
    missing = [name for name in names if name not in tensors]
    unknown = [name for name in tensors if name not in names]
    if missing or unknown:
        raise ShapeError(
            f"Inputs do not match model inputs {list(names)}: "
            f"missing={missing}, unknown={unknown}"
        )
    return {name: np.asarray(tensors[name]) for name in names}


def _bind_inputs(handle: ModelHandle, tensors: PreparedTensors) -> Dict[str, np.ndarray]:
    names = handle.io.input_names

    if isinstance(tensors, Mapping):
        return _bind_by_name(names, tensors)

    tensors = list(tensors)
    if len(tensors) != len(names):
        raise ShapeError(f"Model declares {len(names)} inputs, got {len(tensors)} tensors")
    return {name: np.asarray(tensor) for name, tensor in zip(names, tensors)}


def flat_to_tensor(handle: ModelHandle, values: Sequence[float]) -> np.ndarray:
    """Shape a flat buffer as ``(rows, width)`` for the first declared input.

    A contiguous ``float32`` array is viewed, not copied.
    """
    width = handle.io.input_dimensions
    if width <= 0:
        raise ShapeError(
            f"Model input {handle.io.input_names[0]} has no fixed per-row width "
            f"(shape {format_shape(handle.io.input_shapes[0])})"
        )

    buffer = np.ascontiguousarray(values, dtype=np.float32)
    if buffer.ndim != 1:
        raise ShapeError(f"Flat input must be one-dimensional, got shape {format_shape(buffer.shape)}")
    if buffer.size % width != 0:
        raise ShapeError(f"Input length {buffer.size} is not a multiple of the per-row width {width}")

    return buffer.reshape(buffer.size // width, width)


def run(handle: ModelHandle, feeds: Dict[str, np.ndarray]) -> EvalResult:
    """Submit named inputs to the session and collect every declared output."""
    first = feeds[handle.io.input_names[0]]
    logger.debug("Shape of input", shape=format_shape(first.shape), model=handle.name)

    start_time = time.perf_counter()
    try:
        results = handle.session.run(list(handle.io.output_names), feeds)
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.error("Error running model inference", model=handle.name, error=str(e))
        return EvalResult(error=EvalError(str(e)), duration=duration)
    duration = time.perf_counter() - start_time

    outputs = {
        name: np.ascontiguousarray(value)
        for name, value in zip(handle.io.output_names, results)
    }
    output = outputs[handle.io.output_names[0]]
    logger.debug("Shape of output", shape=format_shape(output.shape), model=handle.name)

    return EvalResult(output=output, outputs=outputs, duration=duration)


def evaluate_tensors(handle: ModelHandle, tensors: PreparedTensors) -> EvalResult:
    """Evaluate caller-built arrays given in declared input order or by name."""
    return run(handle, _bind_inputs(handle, tensors))


def evaluate_flat(
    handle: ModelHandle,
    values: Sequence[float],
    extra_inputs: Optional[Mapping[str, np.ndarray]] = None
) -> EvalResult:
    """Evaluate a flat buffer bound to the first declared input.

    Models with more than one input need the remaining ones in
    ``extra_inputs``, keyed by input name.
    """
    names = handle.io.input_names
    feeds = {names[0]: flat_to_tensor(handle, values)}

    extra_inputs = dict(extra_inputs or {})
    if names[0] in extra_inputs:
        raise ShapeError(f"Input {names[0]} is built from the flat buffer and cannot be passed again")
    feeds.update(_bind_by_name(names[1:], extra_inputs))

    return run(handle, feeds)

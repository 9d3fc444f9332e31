"""ONNX model adapter with artifact-store synchronisation.

Subpackages:
- ``onnx_adapter.common``: configuration, logging and metrics.
- ``onnx_adapter.runtime``: model session, evaluation and thread policy.
- ``onnx_adapter.store``: artifact store backends and the fetcher.

Usage:
- ``from onnx_adapter import OnnxModel``
- ``model = OnnxModel("model.onnx"); model.eval_model(values).unwrap()``
"""

from .runtime.errors import EvalError, LoadError, OnnxAdapterError, ShapeError
from .runtime.model import OnnxModel
from .store.base import FetchError

__all__ = [
    "EvalError",
    "FetchError",
    "LoadError",
    "OnnxAdapterError",
    "OnnxModel",
    "ShapeError",
]

__version__ = "0.1.0"

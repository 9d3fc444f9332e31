"""Exceptions raised by the adapter runtime."""


class OnnxAdapterError(Exception):
    """Base exception for adapter operations."""
    pass


class LoadError(OnnxAdapterError):
    """Model file missing, corrupt, or rejected by onnxruntime."""
    pass


class ShapeError(OnnxAdapterError):
    """Input does not fit the declared input shapes of the loaded model."""
    pass


class EvalError(OnnxAdapterError):
    """onnxruntime failed while executing the model."""
    pass

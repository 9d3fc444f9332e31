"""Common utilities shared across the adapter.

Includes:
- ``config``: pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics for loads, fetches and evaluations.

Import pattern:
- from onnx_adapter.common.config import OnnxAdapterConfig
- from onnx_adapter.common.logging import configure_logging
"""

"""Configuration management for the ONNX model adapter.

This module centralizes environment-driven configuration for the adapter
(artifact store endpoint, thread policy, runtime logging, provider list). It
builds on ``pydantic_settings.BaseSettings`` so configuration can be provided
via environment variables, ``.env`` files, or defaults.

Highlights
- Strongly-typed settings with sensible defaults
- One place to discover the environment variables the adapter honours

Usage
- Build once at startup: ``config = OnnxAdapterConfig()``
- Or use the helper: ``config = get_config()``
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CCDB_URL = "http://alice-ccdb.cern.ch"
DEFAULT_SCHEDULER_ENV_VAR = "ALIEN_JDL_CPUCORES"


class OnnxAdapterConfig(BaseSettings):
    """Configuration for the adapter.

    Field names map onto upper-case environment variables (``ml_onnx_ccdb_url``
    is read from ``ML_ONNX_CCDB_URL``). Defaults keep local development
    convenient while still being explicit.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ml_env: str = Field(default="local", description="Deployment environment name")

    # Logging
    ml_log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    ml_log_format: str = Field(default="json", description="json or console")

    # Artifact store
    ml_onnx_ccdb_url: str = Field(default=DEFAULT_CCDB_URL, description="CCDB base URL")
    ml_onnx_http_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    # Model
    ml_onnx_model_path: str = Field(default="", description="Local model file loaded at startup")

    # Runtime
    ml_onnx_active_threads: int = Field(default=0, ge=0, description="0 lets onnxruntime decide")
    ml_onnx_scheduler_env_var: str = Field(
        default=DEFAULT_SCHEDULER_ENV_VAR,
        description="Variable whose presence marks a shared-slot grid job",
    )
    ml_onnx_log_severity: int = Field(default=2, ge=0, le=4, description="onnxruntime log severity")
    ml_onnx_providers: str = Field(
        default="CPUExecutionProvider",
        description="Comma separated onnxruntime execution providers",
    )

    def provider_list(self) -> List[str]:
        """Return the configured execution providers in priority order."""
        return [p.strip() for p in self.ml_onnx_providers.split(",") if p.strip()]


def get_config() -> OnnxAdapterConfig:
    """Get a fresh configuration read from the current environment."""
    return OnnxAdapterConfig()

"""Metrics collection for the adapter.

Provides a thin convenience wrapper around ``prometheus_client`` so the
embedding application can record model loads, artifact fetches and
evaluations with consistent label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A registry is kept per collector (inject one to share with a host process)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class MetricsCollector:
    """Metrics for one adapter instance.

    Parameters
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.model_loads = Counter(
            'onnx_model_loads_total',
            'Total model load attempts',
            ['status'],
            registry=self.registry
        )

        self.artifact_fetches = Counter(
            'onnx_artifact_fetches_total',
            'Total artifact store fetch attempts',
            ['status'],
            registry=self.registry
        )

        self.evaluations = Counter(
            'onnx_evaluations_total',
            'Total model evaluations',
            ['model_name', 'status'],
            registry=self.registry
        )

        self.evaluation_duration = Histogram(
            'onnx_evaluation_duration_seconds',
            'Model evaluation duration',
            ['model_name'],
            registry=self.registry
        )

        self.active_threads = Gauge(
            'onnx_session_intra_op_threads',
            'Intra-op thread count of the open session (0 = runtime default)',
            registry=self.registry
        )

    def record_model_load(self, status: str, threads: Optional[int] = None) -> None:
        """Record a model load; ``threads`` updates the session gauge on success."""
        self.model_loads.labels(status=status).inc()
        if threads is not None:
            self.active_threads.set(threads)

    def record_fetch(self, status: str) -> None:
        """Record an artifact store fetch."""
        self.artifact_fetches.labels(status=status).inc()

    def record_evaluation(
        self,
        model_name: str,
        status: str,
        duration: float
    ) -> None:
        """Record an evaluation.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.evaluations.labels(model_name=model_name, status=status).inc()
        self.evaluation_duration.labels(model_name=model_name).observe(duration)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')

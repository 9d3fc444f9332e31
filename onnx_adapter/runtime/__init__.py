"""Model runtime: session lifecycle, evaluation and thread policy.

Primary components:
- ``session``: ``ModelSession`` and the immutable ``ModelHandle`` it produces.
- ``evaluator``: prepared-tensor and flat-buffer evaluation with ``EvalResult``.
- ``environment``: ``ThreadPolicy`` and shared-slot job detection.
- ``model``: ``OnnxModel``, the adapter tying runtime and artifact store together.
"""

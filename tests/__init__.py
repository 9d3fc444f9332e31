"""Tests for the ONNX model adapter.

Models are built on the fly with the ``onnx`` helper API and the CCDB is
replaced by an ``httpx.MockTransport``, so no network or model files are
needed.
"""

"""Shared fixtures: tiny ONNX graphs and an in-memory CCDB."""

import hashlib
from pathlib import Path
from typing import Dict, Tuple

import httpx
import numpy as np
import onnx
from onnx import TensorProto, helper, numpy_helper
import pytest

from onnx_adapter.common.config import OnnxAdapterConfig
from onnx_adapter.store.ccdb import CcdbStore

WEIGHTS = (np.arange(8, dtype=np.float32).reshape(4, 2) / 10).astype(np.float32)


def _save(graph: onnx.GraphProto, path: Path) -> str:
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.checker.check_model(model)
    onnx.save(model, str(path))
    return str(path)


def build_linear_model(path: Path) -> str:
    """y = x @ W with x: (N, 4), y: (N, 2)."""
    x = helper.make_tensor_value_info("x", TensorProto.FLOAT, ["N", 4])
    y = helper.make_tensor_value_info("y", TensorProto.FLOAT, ["N", 2])
    weights = numpy_helper.from_array(WEIGHTS, name="W")
    node = helper.make_node("MatMul", ["x", "W"], ["y"])
    graph = helper.make_graph([node], "linear", [x], [y], initializer=[weights])
    return _save(graph, path)


def build_two_input_model(path: Path) -> str:
    """y = (x + bias) @ W with x, bias: (N, 4), y: (N, 2)."""
    x = helper.make_tensor_value_info("x", TensorProto.FLOAT, ["N", 4])
    bias = helper.make_tensor_value_info("bias", TensorProto.FLOAT, ["N", 4])
    y = helper.make_tensor_value_info("y", TensorProto.FLOAT, ["N", 2])
    weights = numpy_helper.from_array(WEIGHTS, name="W")
    nodes = [
        helper.make_node("Add", ["x", "bias"], ["shifted"]),
        helper.make_node("MatMul", ["shifted", "W"], ["y"]),
    ]
    graph = helper.make_graph(nodes, "two_input", [x, bias], [y], initializer=[weights])
    return _save(graph, path)


def build_dynamic_width_model(path: Path) -> str:
    """Identity over x: (N, F) with a symbolic feature dimension."""
    x = helper.make_tensor_value_info("x", TensorProto.FLOAT, ["N", "F"])
    y = helper.make_tensor_value_info("y", TensorProto.FLOAT, ["N", "F"])
    node = helper.make_node("Identity", ["x"], ["y"])
    graph = helper.make_graph([node], "dynamic", [x], [y])
    return _save(graph, path)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host settings out of the tests."""
    monkeypatch.delenv("ALIEN_JDL_CPUCORES", raising=False)
    for name in ("ML_ONNX_MODEL_PATH", "ML_ONNX_ACTIVE_THREADS", "ML_ONNX_CCDB_URL", "ML_ONNX_PROVIDERS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    """Adapter configuration pointing at a test CCDB."""
    return OnnxAdapterConfig(ml_onnx_ccdb_url="http://ccdb.test")


@pytest.fixture
def linear_model_path(tmp_path):
    return build_linear_model(tmp_path / "linear.onnx")


@pytest.fixture
def two_input_model_path(tmp_path):
    return build_two_input_model(tmp_path / "two_input.onnx")


@pytest.fixture
def dynamic_model_path(tmp_path):
    return build_dynamic_width_model(tmp_path / "dynamic.onnx")


@pytest.fixture
def corrupt_model_path(tmp_path):
    path = tmp_path / "corrupt.onnx"
    path.write_bytes(b"this is not an onnx model")
    return str(path)


class FakeCcdb:
    """In-memory CCDB serving one blob per object path, ignoring timestamps."""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, Dict[str, str]]] = {}
        self.requests = []

    def add(self, remote_path: str, blob: bytes, headers: Dict[str, str], md5: str = None):
        headers = dict(headers)
        headers["Content-MD5"] = md5 or hashlib.md5(blob).hexdigest()
        self.objects[remote_path.strip("/")] = (blob, headers)

    def _lookup(self, url_path: str):
        for remote_path, item in self.objects.items():
            if url_path.strip("/").startswith(remote_path + "/"):
                return item
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._lookup(request.url.path)
        if item is None:
            return httpx.Response(404, text="Not found")
        blob, headers = item
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers)
        return httpx.Response(200, headers=headers, content=blob)

    def store(self) -> CcdbStore:
        client = httpx.Client(transport=httpx.MockTransport(self.handler))
        return CcdbStore("http://ccdb.test", client=client)


@pytest.fixture
def fake_ccdb():
    return FakeCcdb()

"""Tests for artifact store backends, the factory and the fetcher."""

from pathlib import Path
import shutil

import httpx
import pytest

from onnx_adapter.store.base import ArtifactStore, FetchError, resolve_timestamp
from onnx_adapter.store.ccdb import CcdbStore
from onnx_adapter.store.factory import ArtifactStoreType, create_artifact_store, store_type_for_url
from onnx_adapter.store.fetcher import ArtifactFetcher, parse_validity
from onnx_adapter.store.local import LocalArtifactStore


def test_resolve_timestamp():
    """Test that negative timestamps mean now."""
    assert resolve_timestamp(1234) == 1234
    assert resolve_timestamp(-1) > 1_600_000_000_000


def test_ccdb_object_url():
    """Test REST URL construction including metadata filters."""
    store = CcdbStore("http://ccdb.test/")
    url = store.object_url("/Analysis/PID/TPC/ML/", 1700000000000, {"runNumber": "529397"})
    assert url == "http://ccdb.test/Analysis/PID/TPC/ML/1700000000000/runNumber=529397"
    store.close()


def test_ccdb_rejects_empty_url():
    """Test that the base URL is required."""
    with pytest.raises(ValueError):
        CcdbStore("")


def test_ccdb_retrieve_blob(tmp_path, fake_ccdb):
    """Test downloading a blob and verifying its checksum."""
    fake_ccdb.add("Analysis/ML", b"model-bytes", {"Valid-From": "100", "Valid-Until": "200"})
    destination = tmp_path / "nested" / "model.onnx"

    with fake_ccdb.store() as store:
        assert store.retrieve_blob("Analysis/ML", 150, str(destination)) is True

    assert destination.read_bytes() == b"model-bytes"
    assert fake_ccdb.requests[0].method == "GET"
    assert fake_ccdb.requests[0].url.path == "/Analysis/ML/150"
    assert list(destination.parent.glob("*.part")) == []


def test_ccdb_checksum_mismatch_keeps_destination(tmp_path, fake_ccdb):
    """Test that a corrupt download never replaces the existing file."""
    fake_ccdb.add("Analysis/ML", b"model-bytes", {}, md5="0" * 32)
    destination = tmp_path / "model.onnx"
    destination.write_bytes(b"previous")

    store = fake_ccdb.store()
    with pytest.raises(FetchError, match="Checksum mismatch"):
        store.retrieve_blob("Analysis/ML", 150, str(destination))

    assert destination.read_bytes() == b"previous"
    assert list(tmp_path.glob("*.part")) == []


def test_ccdb_missing_object(tmp_path, fake_ccdb):
    """Test 404 handling for blobs and headers."""
    store = fake_ccdb.store()
    with pytest.raises(FetchError, match="404"):
        store.retrieve_blob("Unknown/Path", 1, str(tmp_path / "model.onnx"))
    with pytest.raises(FetchError, match="404"):
        store.retrieve_headers("Unknown/Path", {}, 1)
    assert not (tmp_path / "model.onnx").exists()


def test_ccdb_unreachable(tmp_path):
    """Test transport errors surface as FetchError."""
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    store = CcdbStore("http://ccdb.test", client=httpx.Client(transport=httpx.MockTransport(handler)))
    with pytest.raises(FetchError, match="connection refused"):
        store.retrieve_blob("Analysis/ML", 1, str(tmp_path / "model.onnx"))
    with pytest.raises(FetchError):
        store.retrieve_headers("Analysis/ML", {}, 1)


def test_ccdb_retrieve_headers_keeps_case(fake_ccdb):
    """Test that header names come back as sent."""
    fake_ccdb.add("Analysis/ML", b"x", {"Valid-From": "100", "Valid-Until": "200"})
    headers = fake_ccdb.store().retrieve_headers("Analysis/ML", {}, 150)
    assert headers["Valid-From"] == "100"
    assert headers["Valid-Until"] == "200"
    assert fake_ccdb.requests[-1].method == "HEAD"


@pytest.fixture
def local_store(tmp_path, linear_model_path, two_input_model_path):
    directory = tmp_path / "mirror" / "Analysis" / "ML"
    directory.mkdir(parents=True)
    shutil.copyfile(linear_model_path, directory / "100_200.onnx")
    shutil.copyfile(two_input_model_path, directory / "150_300.onnx")
    (directory / "README.txt").write_text("ignored")
    return LocalArtifactStore(str(tmp_path / "mirror"))


def test_local_store_versions(local_store):
    """Test listing stored versions."""
    versions = local_store.list_versions("Analysis/ML")
    assert [(start, end) for start, end, _ in versions] == [(100, 200), (150, 300)]
    assert local_store.list_versions("Nothing/Here") == []


@pytest.mark.parametrize(
    "timestamp, expected",
    [(120, ("100", "200")), (160, ("150", "300")), (250, ("150", "300"))],
)
def test_local_store_selects_covering_version(local_store, timestamp, expected):
    """Test that the newest version covering the timestamp is served."""
    headers = local_store.retrieve_headers("Analysis/ML", {}, timestamp)
    assert (headers["Valid-From"], headers["Valid-Until"]) == expected


def test_local_store_retrieve_blob(tmp_path, local_store):
    """Test copying the selected version."""
    destination = tmp_path / "out" / "model.onnx"
    assert local_store.retrieve_blob("Analysis/ML", 120, str(destination)) is True
    source = Path(local_store.root) / "Analysis" / "ML" / "100_200.onnx"
    assert destination.read_bytes() == source.read_bytes()


def test_local_store_no_version(tmp_path, local_store):
    """Test timestamps outside every window."""
    with pytest.raises(FetchError):
        local_store.retrieve_blob("Analysis/ML", 50, str(tmp_path / "model.onnx"))
    with pytest.raises(FetchError):
        local_store.retrieve_headers("Analysis/ML", {}, 300)


def test_factory_dispatch(tmp_path):
    """Test backend selection by URL."""
    assert store_type_for_url("http://alice-ccdb.cern.ch") == ArtifactStoreType.CCDB
    assert store_type_for_url("https://ccdb.example.org") == ArtifactStoreType.CCDB
    assert store_type_for_url(f"file://{tmp_path}") == ArtifactStoreType.LOCAL
    assert store_type_for_url(str(tmp_path)) == ArtifactStoreType.LOCAL

    ccdb = create_artifact_store("http://ccdb.test", timeout=5.0)
    assert isinstance(ccdb, CcdbStore)
    assert ccdb.timeout == 5.0
    ccdb.close()

    local = create_artifact_store(f"file://{tmp_path}")
    assert isinstance(local, LocalArtifactStore)
    assert local.root == tmp_path


def test_factory_rejects_unknown_scheme():
    """Test unsupported URLs."""
    with pytest.raises(ValueError):
        create_artifact_store("s3://bucket/models")
    with pytest.raises(ValueError):
        create_artifact_store("")


def test_parse_validity_corrected_mapping():
    """Test that each header lands in its own bound."""
    assert parse_validity({"Valid-From": "100", "Valid-Until": "200"}) == (100, 200)


def test_parse_validity_variants():
    """Test base-agnostic parsing, case-insensitive names and missing keys."""
    assert parse_validity({"valid-from": "0x64", "VALID-UNTIL": "0o310"}) == (100, 200)
    assert parse_validity({"Valid-Until": " 200 "}) == (None, 200)
    assert parse_validity({}) == (None, None)
    assert parse_validity({"Valid-From": "soon", "Valid-Until": "-5"}) == (None, None)


class BrokenStore(ArtifactStore):
    """Store whose every call fails."""

    def retrieve_blob(self, remote_path, timestamp, destination, metadata=None):
        raise FetchError("store unreachable")

    def retrieve_headers(self, remote_path, metadata=None, timestamp=-1):
        raise FetchError("store unreachable")


def test_fetcher_success(tmp_path, fake_ccdb):
    """Test a fetch returning the file and headers."""
    fake_ccdb.add("Analysis/ML", b"blob", {"Valid-From": "100", "Valid-Until": "200"})
    fetcher = ArtifactFetcher(fake_ccdb.store())
    destination = str(tmp_path / "model.onnx")

    result = fetcher.fetch("Analysis/ML", 150, destination)
    assert result.success
    assert result.local_file == destination
    assert result.headers["Valid-From"] == "100"
    assert result.error is None


def test_fetcher_failure_is_boolean(tmp_path):
    """Test that store failures are reported, not raised."""
    fetcher = ArtifactFetcher(BrokenStore())
    result = fetcher.fetch("Analysis/ML", 150, str(tmp_path / "model.onnx"))
    assert result.success is False
    assert "unreachable" in result.error
    assert result.headers == {}

    with pytest.raises(FetchError):
        fetcher.headers("Analysis/ML", {}, 150)


class RecordingStore(ArtifactStore):
    """Store that records the calls it receives."""

    def __init__(self):
        self.calls = []

    def retrieve_blob(self, remote_path, timestamp, destination, metadata=None):
        self.calls.append(("blob", timestamp))
        Path(destination).write_bytes(b"blob")
        return True

    def retrieve_headers(self, remote_path, metadata=None, timestamp=-1):
        self.calls.append(("headers", timestamp))
        return {"Valid-From": "100"}


def test_fetcher_resolves_now_once(tmp_path):
    """Test that headers and blob are requested for the same instant, headers first."""
    store = RecordingStore()
    result = ArtifactFetcher(store).fetch("Analysis/ML", -1, str(tmp_path / "model.onnx"))

    assert result.success
    assert [kind for kind, _ in store.calls] == ["headers", "blob"]
    (_, first), (_, second) = store.calls
    assert first == second
    assert first > 1_600_000_000_000


def test_fetcher_staged_download(tmp_path):
    """Test that a staged fetch leaves the destination untouched."""
    destination = tmp_path / "model.onnx"
    destination.write_bytes(b"active")

    result = ArtifactFetcher(RecordingStore()).fetch("Analysis/ML", 150, str(destination), staged=True)
    assert result.success
    assert result.local_file != str(destination)
    assert Path(result.local_file).parent == tmp_path
    assert Path(result.local_file).read_bytes() == b"blob"
    assert destination.read_bytes() == b"active"


def test_fetcher_filesystem_error_is_boolean(tmp_path, fake_ccdb):
    """Test that an unwritable destination is reported, not raised."""
    fake_ccdb.add("Analysis/ML", b"blob", {"Valid-From": "100"})
    blocker = tmp_path / "blocker"
    blocker.write_text("a regular file")
    fetcher = ArtifactFetcher(fake_ccdb.store())

    for staged in (False, True):
        result = fetcher.fetch("Analysis/ML", 150, str(blocker / "model.onnx"), staged=staged)
        assert result.success is False
        assert result.error


def test_stores_wrap_filesystem_errors(tmp_path, fake_ccdb, local_store):
    """Test that both backends raise FetchError for an unwritable destination."""
    fake_ccdb.add("Analysis/ML", b"blob", {})
    blocker = tmp_path / "blocker"
    blocker.write_text("a regular file")

    with pytest.raises(FetchError):
        fake_ccdb.store().retrieve_blob("Analysis/ML", 150, str(blocker / "model.onnx"))
    with pytest.raises(FetchError):
        local_store.retrieve_blob("Analysis/ML", 120, str(blocker / "model.onnx"))

"""Artifact store backends and the model fetcher.

Primary components:
- ``base``: abstract ``ArtifactStore`` interface and ``FetchError``.
- ``ccdb``: CCDB REST implementation over httpx.
- ``local``: directory mirror keyed by validity window, for offline use.
- ``factory``: picks a backend from a URL.
- ``fetcher``: downloads a model and extracts its validity window.

Guidance:
- Prefer ``factory.create_artifact_store`` so callers stay decoupled from
  specific backends.
"""

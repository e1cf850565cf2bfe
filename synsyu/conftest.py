import json
import textwrap

import pytest
import structlog

import synsyu.util.logging
from synsyu.util.config import Settings


@pytest.fixture(autouse=True)
def logging_state(monkeypatch):
    state = {"initialized": False, "log_file": None, "log_path": None}
    monkeypatch.setattr(synsyu.util.logging, "_state", state)
    yield state
    if state["log_file"] is not None:
        state["log_file"].close()


@pytest.fixture
def logger():
    return structlog.get_logger()


@pytest.fixture
def write_manifest(tmp_path):
    manifest_path = tmp_path / "manifest.json"

    def _write_manifest(metadata=None, packages=None, raw=None):
        if raw is not None:
            manifest_path.write_text(raw)
            return manifest_path
        data = {}
        if metadata is not None:
            data["metadata"] = metadata
        if packages is not None:
            data["packages"] = packages
        manifest_path.write_text(json.dumps(data))
        return manifest_path

    return _write_manifest


@pytest.fixture
def settings(tmp_path):
    return Settings(
        manifest_path=tmp_path / "manifest.json",
        disk_check=True,
        min_free_space_bytes=0,
        disk_margin_mb=0,
    )


class FakeProbe:
    """Free space probe returning a fixed value and recording queried
    paths.
    """

    def __init__(self, available):
        self.available = available
        self.paths = []

    def __call__(self, path):
        self.paths.append(path)
        return self.available


@pytest.fixture
def fake_probe():
    return FakeProbe


@pytest.fixture
def config_file(tmp_path):
    def _config_file(content):
        path = tmp_path / "synsyu.conf"
        path.write_text(textwrap.dedent(content))
        return path

    return _config_file

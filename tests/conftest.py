from __future__ import annotations

import pytest
from helpers import FakeScheduler, Recorder

from hubadapter.core.descriptor_loader import load_descriptors
from hubadapter.core.model import DeviceClass


@pytest.fixture(autouse=True)
def isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))


@pytest.fixture
def classes() -> dict[str, DeviceClass]:
    return load_descriptors().classes


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()

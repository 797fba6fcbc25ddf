import pytest

from kaisheng.settings import settings
from kaisheng.utils import state


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Points every manager at a throwaway data directory."""
    monkeypatch.setattr(settings, "data_dir", tmp_path)
    monkeypatch.setattr(settings, "log_dir", tmp_path / "logs")
    monkeypatch.setattr(state, "_last_written_state", None)
    return tmp_path

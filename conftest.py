import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def pytest_ignore_collect(collection_path, config):
    parts = Path(str(collection_path)).relative_to(ROOT).parts if str(collection_path).startswith(str(ROOT)) else ()
    # manuelle Prüfskripte und Hilfsskripte sind keine pytest-Tests
    if "manual" in parts or "scripts" in parts:
        return True
    return None


@pytest.fixture(autouse=True)
def _isolated_tracker_log(tmp_path, monkeypatch):
    import utils

    monkeypatch.setattr(utils, "LOG_PATH", str(tmp_path / "tracker_log.txt"))
    yield

from __future__ import annotations

import pytest

from taskmill.state import STATE_DIR_ENV_VAR
from taskmill.ui import OUTPUT_ENV_VAR


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(STATE_DIR_ENV_VAR, raising=False)
    monkeypatch.delenv(OUTPUT_ENV_VAR, raising=False)

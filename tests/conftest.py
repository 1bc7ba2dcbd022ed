"""
conftest.py - テスト共通 fixture
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

_project_root = Path(__file__).resolve().parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))


# ---------------------------------------------------------------------------
# 共通 fixture
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _clean_env_vars(monkeypatch):
    """テスト間で AMGR_* 環境変数が漏れないようにする"""
    import os
    for var in list(os.environ):
        if var.startswith("AMGR_"):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _reset_singletons():
    """各テスト後にグローバルシングルトンをリセットする"""
    yield
    from activity_runtime import logging_utils, metrics, runtime
    runtime.reset_runtime()
    metrics.reset_metrics_collector()
    logging_utils.reset_configuration()
    logging_utils.reset_logger_cache()
    logging_utils.clear_correlation_id()

from __future__ import annotations

from collections import defaultdict, deque
from pathlib import Path
import sys

import pytest
import yaml
from fastapi.testclient import TestClient


ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))


from backend.app.api.v1 import dependencies  # noqa: E402
from backend.app.core import observability as obs  # noqa: E402
from backend.app.main import app  # noqa: E402


client = TestClient(app)


@pytest.fixture(autouse=True)
def _config_dir(monkeypatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", None, raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_buckets", defaultdict(deque), raising=False)
    return tmp_path


def test_reorder_policy_get_put(tmp_path: Path) -> None:
    response = client.get("/api/v1/configs/reorder")
    assert response.status_code == 200
    assert response.json()["high_multiplier"] == 2.0

    dependencies._services["sentinel"] = object()
    response = client.put("/api/v1/configs/reorder", json={"high_multiplier": 3.0})
    assert response.status_code == 200
    assert response.json()["high_multiplier"] == 3.0
    stored = yaml.safe_load((tmp_path / "reorder.yaml").read_text())
    assert stored == {"high_multiplier": 3.0}
    # services are rebuilt with the new policy on next use
    assert "sentinel" not in dependencies._services


def test_reorder_policy_rejects_inconsistent_multipliers(tmp_path: Path) -> None:
    response = client.put("/api/v1/configs/reorder", json={"critical_multiplier": 5.0})
    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_policy"
    assert not (tmp_path / "reorder.yaml").exists()

    response = client.put("/api/v1/configs/reorder", json={"history_concurrency": 0})
    assert response.status_code == 422


def test_settings_get_put(tmp_path: Path) -> None:
    response = client.get("/api/v1/configs/settings")
    assert response.status_code == 404

    (tmp_path / "settings.yaml").write_text(yaml.safe_dump({"analysis_period_days": 30}))
    response = client.put(
        "/api/v1/configs/settings",
        json={"safety_stock_days": 10, "urgency_filter": ["critical"]},
    )
    assert response.status_code == 200
    settings = yaml.safe_load((tmp_path / "settings.yaml").read_text())
    assert settings == {
        "analysis_period_days": 30,
        "safety_stock_days": 10.0,
        "urgency_filter": ["critical"],
    }
    assert client.get("/api/v1/configs/settings").json()["safety_stock_days"] == 10.0


def test_shipped_settings_keep_forecasting_disabled() -> None:
    settings = yaml.safe_load((ROOT / "configs" / "settings.yaml").read_text())
    assert settings.get("enable_ml_predictions", False) is False

r"""backend/tests/test_auth_and_rate.py"""

from __future__ import annotations

import sys
from collections import defaultdict, deque
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.main import app  # noqa: E402


def test_auth_and_rate_limit(monkeypatch, tmp_path: Path):
    from backend.app.core import observability as obs

    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", "X", raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_per_minute", 1, raising=False)
    monkeypatch.setattr(
        obs.TokenAndRateLimitMiddleware,
        "_buckets",
        defaultdict(deque),
        raising=False,
    )

    client = TestClient(app)

    response = client.get("/api/v1/data/validate")
    assert response.status_code == 401

    authed = client.get("/api/v1/data/validate", headers={"Authorization": "Bearer X"})
    assert authed.status_code != 401

    limited = client.get("/api/v1/data/validate", headers={"Authorization": "Bearer X"})
    assert limited.status_code == 429

    # health and metrics stay reachable without a token
    assert client.get("/api/v1/health").status_code != 401

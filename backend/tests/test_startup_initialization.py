from __future__ import annotations

import sqlite3
from pathlib import Path

from fastapi.testclient import TestClient

from backend.app.core.config import get_settings
from backend.app.main import create_app


def test_startup_initializes_missing_sqlite_db_file_and_parent_dir(tmp_path: Path, monkeypatch) -> None:
    db_path = tmp_path / "backend" / "data" / "studiograph.db"

    assert not db_path.parent.exists()
    assert not db_path.exists()

    monkeypatch.setenv("STUDIOGRAPH_DATABASE_URL", f"sqlite:///{db_path}")
    get_settings.cache_clear()

    app = create_app()
    with TestClient(app) as client:
        response = client.get("/api/health")
        assert response.status_code == 200

    assert db_path.exists()
    assert db_path.parent.exists()

    with sqlite3.connect(db_path) as connection:
        table_names = {
            row[0]
            for row in connection.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        }

    assert "studios" in table_names

    get_settings.cache_clear()

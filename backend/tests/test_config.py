"""Tests for Settings."""

from __future__ import annotations

from tcbf.config import Settings

_DEFAULT = "sqlite+aiosqlite:///./tcbf.db"


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettings:
    def test_job_defaults(self):
        s = _settings(TCBF_DB_URL=_DEFAULT)
        assert s.TCBF_FORM_ID == 44
        assert s.get_form_id() == 44
        assert s.ENTRY_EXPIRY_TTL_SECONDS == 7200
        assert s.ENTRY_EXPIRY_INTERVAL_SECONDS == 3600
        assert s.DEBUG_LOG_LIMIT == 50

    def test_sqlite_dialect_detected(self):
        s = _settings(TCBF_DB_URL=_DEFAULT)
        assert s.is_sqlite
        assert not s.is_postgres
        assert s.sync_db_url() == "sqlite:///./tcbf.db"

    def test_postgres_dialect_detected(self):
        s = _settings(TCBF_DB_URL="postgresql+asyncpg://u:p@db:5432/tcbf")
        assert s.is_postgres
        assert s.sync_db_url() == "postgresql://u:p@db:5432/tcbf"

    def test_postgres_url_composed_from_parts(self):
        s = _settings(
            TCBF_DB_URL=_DEFAULT,
            TCBF_DB_DIALECT="postgres",
            TCBF_DB_HOST="pg",
            TCBF_DB_USER="booking",
            TCBF_DB_PASSWORD="secret",
            TCBF_DB_NAME="tours",
        )
        assert s.TCBF_DB_URL == "postgresql+asyncpg://booking:secret@pg:5432/tours"
        assert s.is_postgres

    def test_parts_ignored_without_password(self):
        s = _settings(TCBF_DB_URL=_DEFAULT, TCBF_DB_DIALECT="postgres")
        assert s.TCBF_DB_URL == _DEFAULT
        assert s.is_sqlite

    def test_form_id_from_env(self, monkeypatch):
        monkeypatch.setenv("TCBF_FORM_ID", "0")
        assert _settings().get_form_id() == 0

"""SQLite store for per-user and per-organisation AI settings."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

from cv_tailor.clients.resolver import TenantTiers, TierSettings
from cv_tailor.utils.crypto import CredentialCipher

DEFAULT_DB_PATH = Path.home() / ".cv-tailor" / "cv.db"

_SETTINGS_COLUMNS = "provider, ollama_base_url, ollama_model, device_model, keys_json"


class SqliteTenantStore:
    """Tenant AI settings. API keys are encrypted before they reach the database."""

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH, cipher: CredentialCipher | None = None):
        self.db_path = Path(db_path)
        self.cipher = cipher
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_ai_settings (
                    user_id TEXT PRIMARY KEY,
                    organisation_id TEXT,
                    provider TEXT,
                    ollama_base_url TEXT,
                    ollama_model TEXT,
                    device_model TEXT,
                    keys_json TEXT NOT NULL DEFAULT '{}'
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS organisation_ai_settings (
                    organisation_id TEXT PRIMARY KEY,
                    ai_enabled INTEGER NOT NULL DEFAULT 0,
                    provider TEXT,
                    ollama_base_url TEXT,
                    ollama_model TEXT,
                    device_model TEXT,
                    keys_json TEXT NOT NULL DEFAULT '{}'
                )
            """)

    # -- writes ---------------------------------------------------------

    def save_user_settings(
        self, user_id: str, settings: TierSettings, organisation_id: str | None = None
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""INSERT OR REPLACE INTO user_ai_settings
                    (user_id, organisation_id, {_SETTINGS_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (user_id, organisation_id, *self._settings_row(settings)),
            )

    def save_organisation_settings(self, organisation_id: str, settings: TierSettings) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""INSERT OR REPLACE INTO organisation_ai_settings
                    (organisation_id, ai_enabled, {_SETTINGS_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (organisation_id, 1 if settings.ai_enabled else 0, *self._settings_row(settings)),
            )

    def set_api_key(
        self, provider: str, api_key: str, *, user_id: str | None = None, organisation_id: str | None = None
    ) -> None:
        """Encrypt and store an API key on a user or organisation."""
        if self.cipher is None:
            raise ValueError("An encryption secret is required to store API keys")
        if (user_id is None) == (organisation_id is None):
            raise ValueError("Pass exactly one of user_id or organisation_id")

        if user_id is not None:
            settings = self.user_settings(user_id) or TierSettings()
            settings.encrypted_keys[provider] = self.cipher.encrypt(api_key)
            self.save_user_settings(user_id, settings, self.user_organisation(user_id))
        else:
            settings = self.organisation_settings(organisation_id) or TierSettings()
            settings.encrypted_keys[provider] = self.cipher.encrypt(api_key)
            self.save_organisation_settings(organisation_id, settings)

    # -- reads ----------------------------------------------------------

    def user_settings(self, user_id: str) -> TierSettings | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_SETTINGS_COLUMNS} FROM user_ai_settings WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return self._row_to_settings(row) if row else None

    def user_organisation(self, user_id: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT organisation_id FROM user_ai_settings WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row[0] if row else None

    def organisation_settings(self, organisation_id: str) -> TierSettings | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_SETTINGS_COLUMNS}, ai_enabled FROM organisation_ai_settings "
                "WHERE organisation_id = ?",
                (organisation_id,),
            ).fetchone()
        if row is None:
            return None
        settings = self._row_to_settings(row[:5])
        settings.ai_enabled = bool(row[5])
        return settings

    def resolve_tenant_config(self, user_id: str, organisation_id: str | None = None) -> TenantTiers:
        """Settings for both tiers; the organisation defaults to the user's own."""
        organisation_id = organisation_id or self.user_organisation(user_id)
        return TenantTiers(
            user=self.user_settings(user_id),
            organisation=self.organisation_settings(organisation_id) if organisation_id else None,
        )

    @staticmethod
    def _settings_row(settings: TierSettings) -> tuple:
        return (
            settings.provider,
            settings.ollama_base_url,
            settings.ollama_model,
            settings.device_model,
            json.dumps(settings.encrypted_keys),
        )

    @staticmethod
    def _row_to_settings(row: tuple) -> TierSettings:
        return TierSettings(
            provider=row[0],
            ollama_base_url=row[1],
            ollama_model=row[2],
            device_model=row[3],
            encrypted_keys=json.loads(row[4] or "{}"),
        )

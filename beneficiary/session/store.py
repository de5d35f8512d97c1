"""Local persisted session store.

Keeps the auth session, the cached profile and card, and user preferences
between launches. Values live in a small SQLite key-value table. When an
encryption key is configured, tokens and personal data are encrypted with
Fernet (AES-128-CBC with HMAC).

Generate a key with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from ..errors import ConfigurationError
from ..models import AuthSession, Beneficiary, InsuranceCard

logger = logging.getLogger(__name__)

SESSION_KEY = "auth_session"
PROFILE_KEY = "profile"
CARD_KEY = "eshic_card"
PREFERENCE_PREFIX = "pref:"

# Keys holding tokens or personal data
SENSITIVE_KEYS = {SESSION_KEY, PROFILE_KEY, CARD_KEY}


class SessionStore:
    """SQLite-backed key-value store for session state."""

    def __init__(self, db_path: str, encryption_key: str | None = None) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file
            encryption_key: Fernet key; sensitive values are stored in
                plain text when omitted
        """
        self.db_path = db_path
        self._fernet: Fernet | None = None

        if encryption_key:
            try:
                self._fernet = Fernet(encryption_key.encode())
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Invalid session encryption key: {e}")
        else:
            logger.warning("Session encryption key not set - tokens stored unencrypted")

        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_table()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_table(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    encrypted INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """)

    @property
    def encryption_enabled(self) -> bool:
        return self._fernet is not None

    # --- raw access ---

    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value."""
        payload = json.dumps(value, default=str)
        encrypted = 0
        if self._fernet and key in SENSITIVE_KEYS:
            payload = self._fernet.encrypt(payload.encode()).decode()
            encrypted = 1

        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, encrypted, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    encrypted = excluded.encrypted,
                    updated_at = excluded.updated_at
                """,
                (key, payload, encrypted, now),
            )

    def get(self, key: str, default: Any = None) -> Any:
        """Return a stored value, or ``default`` if missing or unreadable."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value, encrypted FROM kv_store WHERE key = ?", (key,)
            ).fetchone()

        if not row:
            return default

        value, encrypted = row
        if encrypted:
            if not self._fernet:
                logger.warning(f"Cannot read encrypted value for {key}: no key configured")
                return default
            try:
                value = self._fernet.decrypt(value.encode()).decode()
            except InvalidToken:
                logger.warning(f"Discarding {key}: invalid encrypted value or wrong key")
                self.delete(key)
                return default

        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Discarding {key}: stored value is not valid JSON")
            self.delete(key)
            return default

    def delete(self, *keys: str) -> int:
        with self._connect() as conn:
            cursor = conn.executemany(
                "DELETE FROM kv_store WHERE key = ?", [(k,) for k in keys]
            )
            return cursor.rowcount

    def clear_all(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv_store")

    # --- session ---

    def save_session(self, session: AuthSession) -> None:
        self.set(SESSION_KEY, session.model_dump(mode="json"))
        logger.debug(f"Saved session for beneficiary {session.beneficiary_id}")

    def load_session(self) -> AuthSession | None:
        data = self.get(SESSION_KEY)
        if data is None:
            return None
        try:
            return AuthSession.model_validate(data)
        except ValidationError:
            logger.warning("Discarding stored session: unexpected shape")
            self.delete(SESSION_KEY)
            return None

    def clear_session(self) -> None:
        """Destroy the session and the data cached for it."""
        self.delete(SESSION_KEY, PROFILE_KEY, CARD_KEY)
        logger.info("Session cleared")

    # --- cached records ---

    def cache_profile(self, profile: Beneficiary) -> None:
        self.set(PROFILE_KEY, profile.model_dump(mode="json"))

    def cached_profile(self) -> Beneficiary | None:
        data = self.get(PROFILE_KEY)
        if data is None:
            return None
        try:
            return Beneficiary.model_validate(data)
        except ValidationError:
            self.delete(PROFILE_KEY)
            return None

    def cache_card(self, card: InsuranceCard) -> None:
        self.set(CARD_KEY, card.model_dump(mode="json"))

    def cached_card(self) -> InsuranceCard | None:
        data = self.get(CARD_KEY)
        if data is None:
            return None
        try:
            return InsuranceCard.model_validate(data)
        except ValidationError:
            self.delete(CARD_KEY)
            return None

    # --- preferences ---

    def set_preference(self, name: str, value: Any) -> None:
        self.set(f"{PREFERENCE_PREFIX}{name}", value)

    def get_preference(self, name: str, default: Any = None) -> Any:
        return self.get(f"{PREFERENCE_PREFIX}{name}", default)

    def preferences(self) -> dict[str, Any]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE key LIKE ? ORDER BY key",
                (f"{PREFERENCE_PREFIX}%",),
            ).fetchall()
        return {
            row[0][len(PREFERENCE_PREFIX):]: self.get(row[0]) for row in rows
        }

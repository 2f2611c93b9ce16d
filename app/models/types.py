"""SQLAlchemy column types and datetime helpers shared by the models."""
import base64
from datetime import datetime, timezone
from functools import lru_cache

import structlog
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from sqlalchemy import Text, TypeDecorator

from app.core.config import settings


logger = structlog.get_logger()


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Make a naive datetime UTC-aware (no-op if already aware)."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


@lru_cache(maxsize=4)
def _get_fernet(secret: str) -> Fernet:
    """Derive a Fernet key from the configured secret."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"inventory-sync-credentials-v1",
        iterations=100_000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))
    return Fernet(key)


class EncryptedText(TypeDecorator):
    """Transparently encrypts/decrypts text values stored in the database."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return _get_fernet(settings.ENCRYPTION_SECRET).encrypt(value.encode()).decode()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return _get_fernet(settings.ENCRYPTION_SECRET).decrypt(value.encode()).decode()
        except InvalidToken:
            # Rows written before encryption was enabled hold plaintext
            logger.warning("Credential column is not encrypted, returning stored value")
            return value

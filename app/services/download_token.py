"""
Short-lived download tokens.

A token binds a file (and optionally the issuing user) to an anonymous
download capability. Tokens are opaque, random and kept in their own Redis
database until they expire; validating one does not consume it unless
single-use is enabled.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import json
import logging
import secrets

import redis.asyncio as redis

from app.core.config import settings
from app.core.redis import RedisClient, token_store
from app.utils.exceptions import FileOperationError

logger = logging.getLogger(__name__)

TOKEN_KEY_PREFIX = "download_token:"
TOKEN_BYTES = 32


@dataclass(frozen=True)
class TokenValidation:
    is_valid: bool
    file_id: Optional[int] = None
    user_id: Optional[int] = None


INVALID_TOKEN = TokenValidation(is_valid=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DownloadTokenService:
    def __init__(
        self,
        cache: Optional[RedisClient] = None,
        clock: Callable[[], datetime] = _utcnow,
        lifetime: Optional[timedelta] = None,
        single_use: Optional[bool] = None,
    ):
        self.cache = cache or token_store
        self.clock = clock
        self.lifetime = lifetime or timedelta(minutes=settings.DOWNLOAD_TOKEN_EXPIRE_MINUTES)
        self.single_use = settings.DOWNLOAD_TOKEN_SINGLE_USE if single_use is None else single_use

    @property
    def expires_in_seconds(self) -> int:
        return int(self.lifetime.total_seconds())

    def _key(self, token: str) -> str:
        return f"{TOKEN_KEY_PREFIX}{token}"

    async def generate_download_token(self, file_id: int, user_id: Optional[int] = None) -> str:
        """Mint a token for a file, valid for the configured lifetime"""
        token = secrets.token_urlsafe(TOKEN_BYTES)
        issued_at = self.clock()
        payload = {
            "file_id": file_id,
            "user_id": user_id,
            "issued_at": issued_at.isoformat(),
            "expires_at": (issued_at + self.lifetime).isoformat(),
        }
        stored = await self.cache.set(self._key(token), json.dumps(payload), expire=self.expires_in_seconds)
        if not stored:
            raise FileOperationError("Download token store is unavailable")
        logger.info(f"Issued download token for file {file_id}")
        return token

    async def validate_token(self, token: str) -> TokenValidation:
        """Resolve a token; any miss, expiry or malformed input yields is_valid=False"""
        if not token or not isinstance(token, str) or len(token) > 256:
            return INVALID_TOKEN
        key = self._key(token)
        try:
            raw = await self.cache.getdel(key) if self.single_use else await self.cache.get(key)
        except redis.RedisError as e:
            logger.warning(f"Download token lookup failed: {e}")
            return INVALID_TOKEN
        if not raw:
            return INVALID_TOKEN

        try:
            payload = json.loads(raw)
            expires_at = datetime.fromisoformat(payload["expires_at"])
            file_id = int(payload["file_id"])
            user_id = payload.get("user_id")
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed download token payload")
            return INVALID_TOKEN

        if self.clock() >= expires_at:
            return INVALID_TOKEN
        return TokenValidation(is_valid=True, file_id=file_id, user_id=user_id)

# /chatbotflex/services/security_service.py

import hmac
import hashlib
import bcrypt
import logging
from typing import Optional

from chatbotflex.services.cache_service import cache_service

# Webhook signature checks, admin password verification and login lockout.

logger = logging.getLogger(__name__)

class SecurityService:
    @staticmethod
    def verify_webhook_signature(payload: bytes, signature: str, secret: Optional[str]) -> bool:
        """Checks Meta's X-Hub-Signature-256 header (`sha256=<hex hmac of the raw body>`)."""
        if not secret or not signature or not signature.startswith('sha256='):
            return False
        expected_signature = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected_signature, signature[7:])

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    @staticmethod
    def verify_password(password: str, hashed: Optional[str]) -> bool:
        """False for a wrong password and for a missing or malformed hash."""
        try:
            return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
        except (ValueError, TypeError, AttributeError):
            return False

class RedisLoginAttemptTracker:
    def __init__(self, redis_client, max_attempts: int = 5, lockout_duration: int = 900):
        self.redis = redis_client
        self.lockout_duration = lockout_duration
        self.max_attempts = max_attempts

    async def is_locked_out(self, ip: str) -> bool:
        if not self.redis:
            return False
        try:
            attempts = await self.redis.get(f"login_attempts:{ip}")
        except Exception as e:
            logger.warning(f"Could not read login attempts for {ip}: {e}")
            return False
        return bool(attempts) and int(attempts) >= self.max_attempts

    async def record_attempt(self, ip: str):
        if not self.redis:
            return
        key = f"login_attempts:{ip}"
        try:
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, self.lockout_duration)
        except Exception as e:
            logger.warning(f"Could not record login attempt for {ip}: {e}")

# Globally accessible instance
login_tracker = RedisLoginAttemptTracker(cache_service.redis)

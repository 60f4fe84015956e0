# /chatbotflex/services/jwt_service.py

import uuid
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status

from chatbotflex.config.settings import settings

# Bearer tokens for the admin console. There is a single admin principal, so
# a token only carries its subject and the "access" type.

ACCESS_TOKEN_TYPE = "access"


class JWTService:
    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_hours: int = 24):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.lifetime = timedelta(hours=expire_hours)

    @property
    def expires_in(self) -> int:
        """Token lifetime in seconds, as reported to the login client."""
        return int(self.lifetime.total_seconds())

    def create_access_token(self, subject: str, expires_delta: Optional[timedelta] = None) -> str:
        issued_at = datetime.utcnow()
        claims = {
            "sub": subject,
            "type": ACCESS_TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + (expires_delta or self.lifetime),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> dict:
        """Decoded claims of a valid access token. 401 when the token is bad or expired, 403 for other token types."""
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Token verification failed: {e}",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
        return claims


# Globally accessible instance
jwt_service = JWTService(settings.jwt_secret_key, settings.jwt_algorithm, settings.jwt_access_token_expire_hours)

import jwt
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

from ecahub.core.config import JWT_SECRET_KEY, JWT_ALGORITHM
from ecahub.core.exceptions import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)


class JWTManager:
    """
    Проверка access-токенов, выпущенных внешним сервисом авторизации.

    Полезная нагрузка токена:
        sub        - ID пользователя
        role       - "admin" или "parent"
        school_id  - школа (tenant) пользователя
        type       - всегда "access_token"
    """

    def __init__(self, secret_key: Optional[str] = None, algorithm: str = None):
        self.secret_key = secret_key or JWT_SECRET_KEY
        self.algorithm = algorithm or JWT_ALGORITHM

    def _require_secret(self) -> str:
        if not self.secret_key:
            raise ConfigurationError("JWT_SECRET_KEY", "JWT secret is not configured")
        return self.secret_key

    def create_access_token(
        self,
        user_id: int,
        role: str,
        school_id: int,
        expires_minutes: int = 60,
        extra_data: Dict[str, Any] = None,
    ) -> str:
        """Выпустить токен (используется тестами и служебными скриптами)"""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "role": role,
            "school_id": school_id,
            "exp": now + timedelta(minutes=expires_minutes),
            "iat": now,
            "type": "access_token",
        }
        if extra_data:
            payload.update(extra_data)

        return jwt.encode(payload, self._require_secret(), algorithm=self.algorithm)

    def decode_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and verify JWT token

        Raises:
            AuthenticationError: If token is invalid, expired or of a wrong type
        """
        try:
            payload = jwt.decode(
                token, self._require_secret(), algorithms=[self.algorithm]
            )
        except jwt.ExpiredSignatureError:
            logger.warning("JWT token has expired")
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError:
            logger.warning("Invalid JWT token provided")
            raise AuthenticationError("Invalid token")

        if payload.get("type") != "access_token":
            raise AuthenticationError("Invalid token type")

        for claim in ("sub", "role", "school_id"):
            if payload.get(claim) in (None, ""):
                raise AuthenticationError(f"Token is missing '{claim}' claim")

        return payload


jwt_manager = JWTManager()

from __future__ import annotations

from uuid import UUID

import jwt

from challenge_messaging.application.dto.principal import Principal


class HS256Verifier:
    """Verify JWTs signed with a shared HS256 secret."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, token: str) -> Principal:
        payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        return Principal(
            user_id=UUID(str(payload["sub"])),
            roles=payload.get("roles", []),
        )

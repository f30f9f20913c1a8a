"""
Private gallery access tokens.

Unlocking a private gallery hands the client a signed JWT naming the gallery it
was minted for. Every photo listing or download of a private gallery must
present that token, and the token's gallery id must match the gallery being
requested. Nothing is stored server-side: the token is the whole session.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, NamedTuple, Optional

from jose import JWTError, jwt

from ..config import MIN_TOKEN_SECRET_BYTES, Settings
from ..utils import verify_password as _check_hash

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class AccessPayload(NamedTuple):
    gallery_id: str
    slug: str
    expires_at: int


class AccessTokenGate:
    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ):
        if len(secret.encode("utf-8")) < MIN_TOKEN_SECRET_BYTES:
            raise ValueError(
                f"Gallery token secret must be at least {MIN_TOKEN_SECRET_BYTES} bytes"
            )
        self._secret = secret
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "AccessTokenGate":
        return cls(
            settings.GALLERY_TOKEN_SECRET,
            ttl_seconds=settings.GALLERY_TOKEN_TTL_HOURS * 60 * 60,
            **kwargs,
        )

    def verify_password(self, gallery, supplied: str) -> bool:
        """A gallery without a password hash cannot be unlocked by any password."""
        if not gallery.password_hash or not supplied:
            return False
        try:
            return _check_hash(supplied, gallery.password_hash)
        except (ValueError, TypeError):
            logger.warning("Unreadable password hash on gallery %s", gallery.id)
            return False

    def issue_access_token(self, gallery_id: str, slug: str) -> str:
        now = int(self._clock())
        claims = {
            "galleryId": gallery_id,
            "slug": slug,
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def verify_access_token(self, token: Optional[str]) -> Optional[AccessPayload]:
        """Decoded payload, or None for a bad signature, expiry or garbage."""
        if not token:
            return None
        try:
            # Expiry is checked against our own clock below
            claims = jwt.decode(
                token, self._secret, algorithms=[ALGORITHM], options={"verify_exp": False}
            )
        except JWTError:
            return None

        gallery_id = claims.get("galleryId")
        slug = claims.get("slug")
        exp = claims.get("exp")
        if not isinstance(gallery_id, str) or not isinstance(slug, str):
            return None
        if not isinstance(exp, int) or self._clock() >= exp:
            return None
        return AccessPayload(gallery_id, slug, exp)

    def check_access(self, gallery, token: Optional[str]) -> bool:
        """Public galleries are open; private ones need a token minted for them."""
        if gallery.is_public:
            return True
        payload = self.verify_access_token(token)
        return payload is not None and payload.gallery_id == gallery.id

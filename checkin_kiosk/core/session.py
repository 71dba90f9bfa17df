"""
==============================================================================
Session Token Module
==============================================================================

Supplies the bearer token attached to every booking API call.

Lookup Order:
------------
1. Token handed over by the operator console when a session starts
2. ``AUTH_TOKEN`` setting
3. First line of ``AUTH_TOKEN_FILE``

A JWT whose ``exp`` claim lies in the past counts as no token at all, so the
kiosk shows "Login required." instead of sending a request that would be
rejected. Opaque API tokens are passed through untouched.

==============================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from jose import JWTError, jwt

from checkin_kiosk.config import Settings, get_settings


# Module logger
logger = logging.getLogger(__name__)


class SessionStore:
    """
    Holder for the operator's bearer token.

    Example:
        >>> store = SessionStore()
        >>> store.set_token("12|abcdef")
        >>> store.get_token()
        '12|abcdef'
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._token: Optional[str] = None

    def set_token(self, token: Optional[str]) -> None:
        """Store the token handed over by the operator console."""
        token = (token or "").strip()
        self._token = token or None
        logger.debug("Session token %s", "set" if self._token else "cleared")

    def clear(self) -> None:
        self._token = None

    def get_token(self) -> Optional[str]:
        """
        Get the current bearer token.

        Returns:
            Token string, or None when missing or expired
        """
        token = self._token or self._settings.auth_token or self._read_token_file()

        if not token:
            return None

        if self.is_expired(token):
            logger.warning("Session token has expired")
            return None

        return token

    @staticmethod
    def is_expired(token: str) -> bool:
        """
        Check the ``exp`` claim of a JWT without verifying its signature.

        Args:
            token: Bearer token (JWT or opaque)

        Returns:
            True only for a JWT with an ``exp`` in the past
        """
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return False

        exp = claims.get("exp")
        if exp is None:
            return False

        try:
            expires_at = datetime.fromtimestamp(float(exp), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            return False

        return expires_at <= datetime.now(timezone.utc)

    def _read_token_file(self) -> Optional[str]:
        path = self._settings.token_path
        if not path.is_file():
            return None

        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.error(f"Could not read token file {path}: {e}")
            return None

        return lines[0].strip() if lines and lines[0].strip() else None

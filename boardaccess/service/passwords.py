from __future__ import annotations

from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from boardaccess.logging import get_logger

logger = get_logger(__name__)


class PasswordVerifier:
    """Checks the property admin secret against its argon2id digest."""

    def __init__(self, stored_hash: Optional[str] = None) -> None:
        self.stored_hash = stored_hash
        self._pwd_hasher = PasswordHasher(type=Type.ID)

    def hash_secret(self, secret: str) -> str:
        return self._pwd_hasher.hash(secret)

    def verify(self, secret: Optional[str], stored_hash: Optional[str] = None) -> bool:
        """Return True only if ``secret`` matches the stored digest.

        Never raises; every failure mode collapses to False and the reason
        is only logged.
        """
        digest = stored_hash if stored_hash is not None else self.stored_hash
        if not digest:
            logger.error("admin_password_hash_not_configured")
            return False
        if not secret:
            return False
        try:
            return self._pwd_hasher.verify(digest, secret)
        except VerifyMismatchError:
            logger.warning("admin_password_mismatch")
            return False
        except InvalidHashError:
            logger.error("admin_password_hash_invalid")
            return False
        except VerificationError as exc:
            logger.warning("admin_password_verification_failed", error=str(exc))
            return False

"""
Identity bootstrap: bootstrap token first, anonymous sign-in as fallback.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import jwt

from database import DocumentStore
from errors import AuthError, SyncError
from schemas import Identity


logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"


class IdentityProvider:
    def __init__(self, store: DocumentStore, auth_secret: Optional[str] = None, session_path: Optional[str] = None):
        self.store = store
        self.auth_secret = auth_secret
        self.session_path = Path(session_path) if session_path else None

    def issue_token(self, uid: str, hours: int = 24) -> str:
        if not self.auth_secret:
            raise AuthError("No auth secret configured")
        now = datetime.now(timezone.utc)
        payload = {
            "uid": uid,
            "aud": self.store.app_id,
            "iat": now,
            "exp": now + timedelta(hours=hours),
        }
        return jwt.encode(payload, self.auth_secret, algorithm="HS256")

    def sign_in_with_token(self, token: str) -> Identity:
        if not self.auth_secret:
            raise AuthError("Token sign-in is not configured")
        try:
            payload = jwt.decode(token, self.auth_secret, algorithms=["HS256"], audience=self.store.app_id)
        except jwt.ExpiredSignatureError as e:
            raise AuthError("Token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthError(f"Invalid token: {str(e)}") from e
        uid = payload.get("uid")
        if not uid:
            raise AuthError("Token carries no uid")
        return Identity(uid=str(uid), anonymous=False, provider="token")

    def sign_in_anonymously(self) -> Identity:
        uid = self._saved_uid()
        if uid is None:
            uid = uuid.uuid4().hex
            try:
                self.store.create_document(
                    USERS_COLLECTION,
                    {"uid": uid, "app_id": self.store.app_id, "anonymous": True},
                    timestamp_field="created_at",
                )
            except SyncError as e:
                raise AuthError("Anonymous sign-in failed") from e
            self._save_uid(uid)
        return Identity(uid=uid, anonymous=True, provider="anonymous")

    def _saved_uid(self) -> Optional[str]:
        if self.session_path is None or not self.session_path.exists():
            return None
        try:
            uid = self.session_path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.error(f"Could not read anonymous session: {str(e)}")
            return None
        return uid or None

    def _save_uid(self, uid: str) -> None:
        if self.session_path is None:
            return
        try:
            self.session_path.write_text(uid + "\n", encoding="utf-8")
        except OSError as e:
            logger.error(f"Could not persist anonymous session: {str(e)}")


def bootstrap_identity(provider: IdentityProvider, token: Optional[str] = None) -> Optional[Identity]:
    """Sign in once for the process lifetime. Returns None if every method fails."""
    if token:
        try:
            identity = provider.sign_in_with_token(token)
            logger.info(f"Signed in with bootstrap token as {identity.uid}")
            return identity
        except AuthError as e:
            logger.error(f"Bootstrap token rejected, falling back to anonymous: {str(e)}")
    try:
        identity = provider.sign_in_anonymously()
        logger.info(f"Signed in anonymously as {identity.uid}")
        return identity
    except AuthError as e:
        logger.error(f"Auth error: {str(e)}")
        return None

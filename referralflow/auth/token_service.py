"""
Session revocation list.

Session artifacts are stateless signed tokens, so logout cannot delete them.
Instead the session id is added to a revocation list that is consulted on
every verification with check_revoked=True.

Entries only need to live as long as the longest session; after that the
artifact has expired anyway and the entry is purged.
"""

import time
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Dict, Optional

from referralflow.config.platform import SESSION_TTL

logger = logging.getLogger(__name__)


class RevocationReason(str, Enum):
    """Reasons for session revocation."""
    LOGOUT = "logout"


@dataclass
class RevocationEntry:
    """Entry in the revocation list."""
    session_id: str
    revoked_at: datetime
    reason: RevocationReason
    expires_at_monotonic: float


class TokenService:
    """
    Thread-safe in-memory revocation list.

    Usage:
        token_service = TokenService()
        token_service.revoke_session(session_id, RevocationReason.LOGOUT)
        if token_service.is_revoked(session_id):
            ...
    """

    # Keep entries a little longer than a session can live
    DEFAULT_REVOCATION_TTL = int(SESSION_TTL.total_seconds()) * 2

    CLEANUP_INTERVAL = 60

    def __init__(self, revocation_ttl: int = DEFAULT_REVOCATION_TTL):
        self._revocation_ttl = revocation_ttl
        self._revoked_sessions: Dict[str, RevocationEntry] = {}
        self._lock = Lock()
        self._last_cleanup = time.monotonic()

    def is_revoked(self, session_id: Optional[str]) -> bool:
        """Check if a session id has been revoked."""
        if not session_id:
            return False
        self._maybe_cleanup()
        with self._lock:
            return session_id in self._revoked_sessions

    def revoke_session(
        self,
        session_id: str,
        reason: RevocationReason = RevocationReason.LOGOUT,
    ) -> None:
        """Add a session id to the revocation list."""
        entry = RevocationEntry(
            session_id=session_id,
            revoked_at=datetime.now(timezone.utc),
            reason=reason,
            expires_at_monotonic=time.monotonic() + self._revocation_ttl,
        )
        with self._lock:
            self._revoked_sessions[session_id] = entry

        logger.info(
            "Revoked session",
            extra={"session_id": session_id, "reason": reason.value},
        )

    def clear_revocation_list(self) -> None:
        with self._lock:
            self._revoked_sessions.clear()

    def _maybe_cleanup(self) -> None:
        now = time.monotonic()
        if now - self._last_cleanup < self.CLEANUP_INTERVAL:
            return
        with self._lock:
            expired = [
                sid for sid, entry in self._revoked_sessions.items()
                if entry.expires_at_monotonic <= now
            ]
            for sid in expired:
                del self._revoked_sessions[sid]
            self._last_cleanup = now
        if expired:
            logger.debug("Purged expired revocation entries", extra={"count": len(expired)})


# Singleton token service (lazy initialization)
_token_service: Optional[TokenService] = None
_token_service_lock = Lock()


def get_token_service() -> TokenService:
    """Get the process-wide TokenService."""
    global _token_service
    with _token_service_lock:
        if _token_service is None:
            _token_service = TokenService()
        return _token_service

"""
Authenticated principal carried by a session.
"""

from dataclasses import dataclass
from typing import Any, Optional

from referralflow.constants.email_domains import normalize_email


@dataclass(frozen=True)
class Principal:
    """
    The verified identity behind a session.

    A principal carries NO tenant and NO role: what it may touch is computed
    per request from its email by MembershipIndex.
    """
    email: str
    subject_id: str
    display_name: Optional[str] = None
    session_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "email", normalize_email(self.email))

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "subject_id": self.subject_id,
            "display_name": self.display_name,
        }

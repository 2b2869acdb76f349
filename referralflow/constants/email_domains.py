"""
Public consumer email providers.

IMPORTANT: Domain-based agency membership MUST NEVER match one of these
domains. An agency that lists "gmail.com" in its authorized domains would
otherwise admit anyone with a free mailbox.

The check is applied before the domain query is issued, not as a filter on
its results.
"""

from typing import FrozenSet, Optional


PUBLIC_EMAIL_DOMAINS: FrozenSet[str] = frozenset({
    # Google
    "gmail.com",
    "googlemail.com",
    # Microsoft
    "outlook.com",
    "hotmail.com",
    "live.com",
    "msn.com",
    # Yahoo / AOL
    "yahoo.com",
    "ymail.com",
    "rocketmail.com",
    "aol.com",
    # Apple
    "icloud.com",
    "me.com",
    "mac.com",
    # Privacy / other free providers
    "proton.me",
    "protonmail.com",
    "pm.me",
    "zoho.com",
    "gmx.com",
    "gmx.net",
    "mail.com",
    "yandex.com",
    "fastmail.com",
    "hey.com",
    "tutanota.com",
    # ISP mailboxes
    "comcast.net",
    "att.net",
    "verizon.net",
    "sbcglobal.net",
})


def normalize_email(email: Optional[str]) -> str:
    """Lower-case and trim an email address for comparison."""
    if not email:
        return ""
    return email.strip().lower()


def email_domain(email: Optional[str]) -> str:
    """
    Extract the domain of an email address (substring after the last '@').

    Returns an empty string when there is no '@'.
    """
    normalized = normalize_email(email)
    if "@" not in normalized:
        return ""
    return normalized.rsplit("@", 1)[1]


def is_public_email_domain(domain: Optional[str]) -> bool:
    """Check whether a domain belongs to a public consumer email provider."""
    if not domain:
        return False
    return domain.strip().lower() in PUBLIC_EMAIL_DOMAINS

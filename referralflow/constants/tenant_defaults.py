"""
Default agency settings.

Stored settings are merged over these section by section when a tenant is
hydrated, so a partially configured agency still renders a complete intake
form. Unknown agencies are rendered entirely from these defaults.
"""

import copy
from typing import Any, Optional

DEFAULT_AGENCY_NAME = "Agency Name"
SYSTEM_ERROR_AGENCY_NAME = "Agency Not Loaded (System Error)"

STANDARD_OFFERED_SERVICES = [
    "Skilled Nursing (SN)",
    "Physical Therapy (PT)",
    "Occupational Therapy (OT)",
    "Speech Therapy (ST)",
    "Home Health Aide (HHA)",
    "Medical Social Worker (MSW)",
    "Provider Attendant Services (Medicaid)",
    "Caregiver Services (Private Pay)",
]

# Notification types enabled for a new agency
DEFAULT_NOTIFICATION_TYPES = ["NEW_REFERRAL", "STATUS_UPDATE"]

DEFAULT_SETTINGS: dict[str, dict[str, Any]] = {
    "company_profile": {
        "name": DEFAULT_AGENCY_NAME,
        "phone": "",
        "fax": "",
        "email": "",
        "home_insurances": [],
    },
    "branding": {
        "logo_url": "",
    },
    "notifications": {
        "email_recipients": [],
        "enabled_types": DEFAULT_NOTIFICATION_TYPES,
        "staff": [],
    },
    "configuration": {
        "accepted_insurances": [],
        "offered_services": STANDARD_OFFERED_SERVICES,
    },
}

SETTINGS_SECTIONS = tuple(DEFAULT_SETTINGS.keys())


def default_settings() -> dict[str, dict[str, Any]]:
    """Fresh deep copy of DEFAULT_SETTINGS (safe to mutate)."""
    return copy.deepcopy(DEFAULT_SETTINGS)


def merge_with_defaults(stored: Optional[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """
    Overlay stored settings on the defaults, one section at a time.

    Keys missing from a stored section keep their default value; sections
    that are not dicts in storage are ignored.
    """
    merged = default_settings()
    for section in SETTINGS_SECTIONS:
        stored_section = (stored or {}).get(section)
        if isinstance(stored_section, dict):
            merged[section].update(copy.deepcopy(stored_section))
    return merged

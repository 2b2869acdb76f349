"""
ReferralFlow tenancy core.

Tenant resolution, membership and per-record authorization for the
multi-agency referral intake platform.
"""

__version__ = "1.0.0"

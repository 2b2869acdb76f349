"""
Tests for TenantDirectory.

Tests cover:
- Resolution by id, then by slug (id always wins)
- Placeholder records for unknown agencies (never raises)
- Production vs non-production placeholder status
- Storage failure placeholder
- Settings merged over defaults
"""

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from referralflow.constants.tenant_defaults import (
    DEFAULT_AGENCY_NAME,
    STANDARD_OFFERED_SERVICES,
    SYSTEM_ERROR_AGENCY_NAME,
)
from referralflow.models.tenant import SubscriptionStatus
from referralflow.services.tenant_directory import TenantDirectory


class TestResolveTenant:
    """Tests for resolve_tenant lookups."""

    def test_resolves_by_id(self, db_session, platform_config, make_tenant):
        make_tenant("t-100", name="Sunrise Home Health", slug="sunrise")
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("t-100")
        assert tenant.exists
        assert tenant.id == "t-100"
        assert tenant.slug == "sunrise"
        assert tenant.name == "Sunrise Home Health"

    def test_resolves_by_slug(self, db_session, platform_config, make_tenant):
        make_tenant("t-100", slug="sunrise")
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("sunrise")
        assert tenant.exists
        assert tenant.id == "t-100"

    def test_id_match_wins_over_slug_match(self, db_session, platform_config, make_tenant):
        make_tenant("acme", name="Real Acme")
        make_tenant("t-200", name="Shadow", slug="acme-shadow")
        # Another tenant whose slug equals the first tenant's id cannot shadow it
        make_tenant("t-300", name="Impostor", slug="t-100")
        make_tenant("t-100", name="Owner of t-100")

        directory = TenantDirectory(db_session, platform_config)
        assert directory.resolve_tenant("acme").name == "Real Acme"
        assert directory.resolve_tenant("t-100").name == "Owner of t-100"

    def test_slug_defaults_to_id(self, db_session, platform_config, make_tenant):
        make_tenant("t-100")
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("t-100")
        assert tenant.slug == "t-100"

    def test_access_lists_hydrated(self, db_session, platform_config, make_tenant):
        make_tenant("t-100", emails=["a@x.com"], domains=["clinic.com"], owner_email="owner@x.com")
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("t-100")
        assert tenant.authorized_emails == ["a@x.com"]
        assert tenant.authorized_domains == ["clinic.com"]
        assert tenant.owner_email == "owner@x.com"


class TestPlaceholder:
    """Tests for unknown and unreachable agencies."""

    def test_unknown_agency_returns_placeholder(self, db_session, platform_config):
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("nope")
        assert tenant.exists is False
        assert tenant.id == "nope"
        assert tenant.name == DEFAULT_AGENCY_NAME
        assert tenant.authorized_emails == []
        assert tenant.authorized_domains == []

    def test_placeholder_active_outside_production(self, db_session, platform_config):
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("nope")
        assert tenant.subscription_status == SubscriptionStatus.ACTIVE
        # Still not available: it does not exist
        assert tenant.is_available is False

    def test_placeholder_suspended_in_production(self, db_session, production_config):
        tenant = TenantDirectory(db_session, production_config).resolve_tenant("nope")
        assert tenant.subscription_status == SubscriptionStatus.SUSPENDED

    def test_unknown_slug_in_production(self, db_session, production_config):
        tenant = TenantDirectory(db_session, production_config).resolve_tenant("ghost-slug")
        assert tenant.id == "ghost-slug"
        assert tenant.slug == "ghost-slug"
        assert tenant.exists is False
        assert tenant.subscription_status == SubscriptionStatus.SUSPENDED
        assert tenant.is_available is False

    def test_blank_key_returns_placeholder(self, db_session, platform_config):
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("  ")
        assert tenant.exists is False

    def test_storage_failure_returns_system_error_placeholder(self, db_session, platform_config):
        directory = TenantDirectory(db_session, platform_config)
        with patch.object(
            directory.repository, "get_by_id",
            side_effect=OperationalError("SELECT", {}, Exception("connection lost")),
        ):
            tenant = directory.resolve_tenant("t-100")
        assert tenant.exists is False
        assert tenant.name == SYSTEM_ERROR_AGENCY_NAME


class TestSettingsDefaults:
    """Tests for default-merged settings."""

    def test_missing_sections_filled(self, db_session, platform_config, make_tenant):
        make_tenant("t-100", settings={"branding": {"logo_url": "https://cdn/logo.png"}})
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("t-100")
        assert tenant.settings["branding"]["logo_url"] == "https://cdn/logo.png"
        assert tenant.settings["configuration"]["offered_services"] == STANDARD_OFFERED_SERVICES
        assert set(tenant.settings) == {"company_profile", "branding", "notifications", "configuration"}

    def test_missing_keys_within_section_filled(self, db_session, platform_config, make_tenant):
        make_tenant("t-100", settings={"company_profile": {"phone": "555-0100"}})
        tenant = TenantDirectory(db_session, platform_config).resolve_tenant("t-100")
        profile = tenant.settings["company_profile"]
        assert profile["phone"] == "555-0100"
        assert profile["fax"] == ""
        assert profile["name"] == tenant.name

    def test_public_dict_has_no_access_lists(self, db_session, platform_config, make_tenant):
        make_tenant("t-100", emails=["a@x.com"], owner_email="owner@x.com")
        public = TenantDirectory(db_session, platform_config).resolve_tenant("t-100").to_public_dict()
        assert "authorized_emails" not in public
        assert "owner_email" not in public
        assert public["available"] is True

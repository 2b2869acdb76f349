"""
Tests for MembershipIndex.

Tests cover:
- Union of domain, email and owner signals, de-duplicated by tenant id
- Public email domains never produce a domain query
- Partial vs fail_closed behavior when one signal query fails
- Routing decisions (stay, redirect, select, deny)
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from referralflow.config.platform import MembershipFailurePolicy, PlatformConfig
from referralflow.models.tenant_access_grant import GrantKind
from referralflow.repositories.tenant_repository import TenantRepository
from referralflow.services.membership_index import MembershipIndex, RoutingAction


def _db_error():
    return OperationalError("SELECT", {}, Exception("connection lost"))


# ============================================================================
# memberships_for
# ============================================================================

class TestMembershipsFor:
    """Tests for membership computation."""

    def test_email_grant(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", emails=["nurse@clinic.com"])
        ids = [t.id for t in MembershipIndex(db_session, platform_config).memberships_for("nurse@clinic.com")]
        assert ids == ["t-1"]

    def test_domain_grant(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", domains=["clinic.com"])
        ids = [t.id for t in MembershipIndex(db_session, platform_config).memberships_for("anyone@clinic.com")]
        assert ids == ["t-1"]

    def test_owner_email(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", owner_email="boss@clinic.com")
        ids = [t.id for t in MembershipIndex(db_session, platform_config).memberships_for("boss@clinic.com")]
        assert ids == ["t-1"]

    def test_email_is_case_insensitive(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", emails=["nurse@clinic.com"])
        index = MembershipIndex(db_session, platform_config)
        assert [t.id for t in index.memberships_for("  Nurse@Clinic.COM ")] == ["t-1"]

    def test_union_is_deduplicated(self, db_session, platform_config, make_tenant):
        # Same tenant matched by all three signals
        make_tenant("t-1", emails=["a@clinic.com"], domains=["clinic.com"], owner_email="a@clinic.com")
        make_tenant("t-2", emails=["a@clinic.com"])
        make_tenant("t-3", owner_email="a@clinic.com")

        ids = [t.id for t in MembershipIndex(db_session, platform_config).memberships_for("a@clinic.com")]
        assert sorted(ids) == ["t-1", "t-2", "t-3"]
        assert len(ids) == len(set(ids))

    def test_clinic_domain_scenario(self, db_session, platform_config, make_tenant):
        """A domain grant admits colleagues but not other domains or agencies."""
        make_tenant("sunrise", domains=["clinic.com"])
        make_tenant("acme", emails=["bob@acme.org"])

        index = MembershipIndex(db_session, platform_config)
        assert [t.id for t in index.memberships_for("alice@clinic.com")] == ["sunrise"]
        assert [t.id for t in index.memberships_for("carol@clinic.com")] == ["sunrise"]
        assert index.memberships_for("alice@other.com") == []
        assert index.is_member("alice@clinic.com", "sunrise") is True
        assert index.is_member("alice@clinic.com", "acme") is False

    def test_domain_and_email_grants_across_agencies(self, db_session, platform_config, make_tenant):
        """Domain grant on one agency plus an email grant on another; then the domain is revoked."""
        make_tenant("agency-a", domains=["clinic.com"])
        make_tenant("agency-b", emails=["intern@clinic.com"])

        index = MembershipIndex(db_session, platform_config)
        assert [t.id for t in index.memberships_for("intern@clinic.com")] == ["agency-a", "agency-b"]

        TenantRepository(db_session).replace_grants("agency-a", GrantKind.DOMAIN, [])
        assert [t.id for t in index.memberships_for("intern@clinic.com")] == ["agency-b"]

    def test_empty_email_has_no_memberships(self, db_session, platform_config):
        index = MembershipIndex(db_session, platform_config)
        assert index.memberships_for(None) == []
        assert index.memberships_for("") == []

    def test_returns_hydrated_records(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", slug="sunrise", emails=["a@clinic.com"])
        (record,) = MembershipIndex(db_session, platform_config).memberships_for("a@clinic.com")
        assert record.exists
        assert record.slug == "sunrise"
        assert "configuration" in record.settings


@pytest.mark.security
class TestPublicDomainDenylist:
    """Public consumer domains must never grant domain membership."""

    def test_gmail_domain_grant_is_ignored(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", domains=["gmail.com"])
        assert MembershipIndex(db_session, platform_config).memberships_for("stranger@gmail.com") == []

    def test_domain_query_not_issued_for_public_domain(self, db_session, platform_config):
        index = MembershipIndex(db_session, platform_config)
        with patch.object(index.repository, "find_by_grant", wraps=index.repository.find_by_grant) as spy:
            index.memberships_for("stranger@gmail.com")

        kinds = [call.args[0] for call in spy.call_args_list]
        assert GrantKind.DOMAIN not in kinds
        assert kinds == [GrantKind.EMAIL]

    def test_explicit_gmail_address_still_works(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", emails=["owner.personal@gmail.com"])
        ids = [t.id for t in MembershipIndex(db_session, platform_config).memberships_for("owner.personal@gmail.com")]
        assert ids == ["t-1"]


class TestSignalFailure:
    """A failed signal query can only remove memberships."""

    def test_partial_policy_keeps_other_signals(self, db_session, platform_config, make_tenant):
        make_tenant("t-domain", domains=["clinic.com"])
        make_tenant("t-owner", owner_email="a@clinic.com")

        index = MembershipIndex(db_session, platform_config)
        with patch.object(index.repository, "find_by_grant", side_effect=_db_error()):
            ids = [t.id for t in index.memberships_for("a@clinic.com")]

        assert ids == ["t-owner"]

    def test_fail_closed_policy_returns_nothing(self, db_session, make_tenant):
        config = PlatformConfig(membership_failure_policy=MembershipFailurePolicy.FAIL_CLOSED)
        make_tenant("t-owner", owner_email="a@clinic.com")

        index = MembershipIndex(db_session, config)
        with patch.object(index.repository, "find_by_grant", side_effect=_db_error()):
            assert index.memberships_for("a@clinic.com") == []

    def test_no_failure_fail_closed_returns_all(self, db_session, make_tenant):
        config = PlatformConfig(membership_failure_policy=MembershipFailurePolicy.FAIL_CLOSED)
        make_tenant("t-owner", owner_email="a@clinic.com")
        ids = [t.id for t in MembershipIndex(db_session, config).memberships_for("a@clinic.com")]
        assert ids == ["t-owner"]


# ============================================================================
# route_for
# ============================================================================

class TestRouteFor:
    """Tests for post-login routing decisions."""

    def test_stay_when_scoped_tenant_is_membership(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", emails=["a@clinic.com"])
        make_tenant("t-2", emails=["a@clinic.com"])
        routing = MembershipIndex(db_session, platform_config).route_for("a@clinic.com", "t-2")
        assert routing.action == RoutingAction.STAY
        assert routing.tenant_id == "t-2"

    def test_stay_matches_slug(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", slug="sunrise", emails=["a@clinic.com"])
        routing = MembershipIndex(db_session, platform_config).route_for("a@clinic.com", "sunrise")
        assert routing.action == RoutingAction.STAY
        assert routing.tenant_id == "t-1"
        assert routing.tenant_slug == "sunrise"

    def test_redirect_to_only_membership(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", slug="sunrise", emails=["a@clinic.com"])
        routing = MembershipIndex(db_session, platform_config).route_for("a@clinic.com", "default")
        assert routing.action == RoutingAction.REDIRECT
        assert routing.tenant_slug == "sunrise"

    def test_select_when_several(self, db_session, platform_config, make_tenant):
        make_tenant("t-1", emails=["a@clinic.com"])
        make_tenant("t-2", emails=["a@clinic.com"])
        routing = MembershipIndex(db_session, platform_config).route_for("a@clinic.com", "other")
        assert routing.action == RoutingAction.SELECT
        assert routing.tenant_id is None
        assert len(routing.to_dict()["agencies"]) == 2

    def test_deny_without_membership(self, db_session, platform_config):
        routing = MembershipIndex(db_session, platform_config).route_for("a@nowhere.com", "t-1")
        assert routing.action == RoutingAction.DENY

    def test_admin_stays(self, db_session, platform_config):
        routing = MembershipIndex(db_session, platform_config).route_for(
            "admin@referralflow.health", "t-1", is_admin=True,
        )
        assert routing.action == RoutingAction.STAY
        assert routing.tenant_id == "t-1"

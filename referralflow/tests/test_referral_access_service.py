"""
Tests for ReferralAccessService.

Tests cover:
- Staff read/update/list authorized against the referral's own tenant
- Missing referrals indistinguishable from foreign ones for non-admins
- Public submission owned by the host-scoped tenant
- Public status lookup limited to exact id within the host tenant
- Suspended, cancelled and unknown agencies refused identically
"""

import pytest

from referralflow.auth.principal import Principal
from referralflow.models.referral import Referral, ReferralStatus
from referralflow.models.tenant import SubscriptionStatus
from referralflow.platform.errors import (
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    TenantIsolationError,
    ValidationError,
)
from referralflow.services.membership_index import MembershipIndex
from referralflow.services.record_authorizer import UNRESOLVED_TENANT_ID, RecordAuthorizer
from referralflow.services.referral_access_service import (
    AGENCY_UNAVAILABLE,
    ReferralAccessService,
)
from referralflow.services.tenant_directory import TenantDirectory


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def service(db_session, platform_config, audit_sink):
    return ReferralAccessService(
        db_session,
        TenantDirectory(db_session, platform_config),
        RecordAuthorizer(MembershipIndex(db_session, platform_config), platform_config, audit_sink),
        audit_sink,
    )


@pytest.fixture
def agencies(make_tenant):
    make_tenant("sunrise", emails=["nurse@clinic.com"])
    make_tenant("acme", emails=["bob@acme.org"])
    make_tenant("closed", status=SubscriptionStatus.CANCELLED)
    make_tenant("paused", status=SubscriptionStatus.SUSPENDED)


@pytest.fixture
def nurse():
    return Principal(email="nurse@clinic.com", subject_id="user_nurse")


@pytest.fixture
def admin():
    return Principal(email="admin@referralflow.health", subject_id="user_admin")


@pytest.fixture
def acme_referral(db_session, agencies):
    referral = Referral(
        tenant_id="acme",
        referrer_name="Dr. Lee",
        patient_name="Pat Doe",
        status_history=[{"status": "RECEIVED", "changed_at": "2024-01-01T00:00:00+00:00", "notes": "internal"}],
    )
    db_session.add(referral)
    db_session.flush()
    return referral


@pytest.fixture
def sunrise_referral(db_session, agencies):
    referral = Referral(tenant_id="sunrise", referrer_name="Dr. Kim", patient_name="Sam Roe")
    db_session.add(referral)
    db_session.flush()
    return referral


# ============================================================================
# Staff paths
# ============================================================================

class TestStaffAccess:
    """Tests for authenticated referral access."""

    def test_member_reads_own_referral(self, service, nurse, sunrise_referral, audit_sink):
        assert service.get_referral(nurse, sunrise_referral.id).id == sunrise_referral.id
        assert audit_sink.actions() == ["data.accessed"]

    @pytest.mark.security
    def test_cross_tenant_read_denied(self, service, nurse, acme_referral, audit_sink):
        with pytest.raises(TenantIsolationError):
            service.get_referral(nurse, acme_referral.id)
        assert audit_sink.actions() == ["security.cross_tenant_denied"]

    @pytest.mark.security
    def test_missing_referral_looks_like_denial(self, service, nurse, agencies, audit_sink):
        with pytest.raises(TenantIsolationError):
            service.get_referral(nurse, "does-not-exist")

        assert audit_sink.actions() == ["security.cross_tenant_denied"]
        event = audit_sink.events[0]
        assert event.actor_id == "user_nurse"
        assert event.resource_id == "does-not-exist"
        assert event.tenant_id == UNRESOLVED_TENANT_ID
        assert event.detail["action"] == "read"

    @pytest.mark.security
    def test_missing_referral_update_audited_as_write(self, service, nurse, agencies, audit_sink):
        with pytest.raises(TenantIsolationError):
            service.update_status(nurse, "does-not-exist", "ACCEPTED")
        denied = audit_sink.of("security.cross_tenant_denied")
        assert len(denied) == 1
        assert denied[0].detail["action"] == "write"

    def test_admin_sees_not_found(self, service, admin, agencies):
        with pytest.raises(NotFoundError):
            service.get_referral(admin, "does-not-exist")

    def test_admin_reads_any(self, service, admin, acme_referral):
        assert service.get_referral(admin, acme_referral.id).tenant_id == "acme"

    def test_no_principal(self, service, sunrise_referral):
        with pytest.raises(AuthenticationError):
            service.get_referral(None, sunrise_referral.id)

    def test_update_status(self, service, nurse, sunrise_referral, audit_sink):
        referral = service.update_status(nurse, sunrise_referral.id, "IN_REVIEW", note="called referrer")
        assert referral.status == ReferralStatus.IN_REVIEW
        assert referral.status_history[-1]["status"] == "IN_REVIEW"
        assert referral.status_history[-1]["notes"] == "called referrer"
        assert audit_sink.of("data.updated")[0].resource_id == sunrise_referral.id

    def test_update_status_cross_tenant_denied(self, service, nurse, acme_referral):
        with pytest.raises(TenantIsolationError):
            service.update_status(nurse, acme_referral.id, "ACCEPTED")
        assert acme_referral.status != ReferralStatus.ACCEPTED

    def test_update_unknown_status(self, service, nurse, sunrise_referral):
        with pytest.raises(ValidationError):
            service.update_status(nurse, sunrise_referral.id, "LOST")

    def test_list_own_agency(self, service, nurse, sunrise_referral, acme_referral):
        ids = [r.id for r in service.list_referrals(nurse, "sunrise")]
        assert ids == [sunrise_referral.id]

    def test_list_other_agency_denied(self, service, nurse, acme_referral):
        with pytest.raises(TenantIsolationError):
            service.list_referrals(nurse, "acme")

    def test_list_hides_archived(self, service, nurse, sunrise_referral, db_session):
        sunrise_referral.is_archived = True
        db_session.flush()
        assert service.list_referrals(nurse, "sunrise") == []
        assert len(service.list_referrals(nurse, "sunrise", include_archived=True)) == 1


# ============================================================================
# Public paths
# ============================================================================

class TestPublicSubmission:
    """Tests for public intake."""

    def test_submission_owned_by_host_tenant(self, service, agencies, audit_sink):
        referral = service.submit_public_referral("sunrise", {
            "referrer_name": "Dr. Kim",
            "patient_name": "Sam Roe",
            "confirmation_email": "Referrer@Hospital.org",
            "tenant_id": "acme",
            "diagnosis": "CHF",
        })
        assert referral.tenant_id == "sunrise"
        assert referral.status == ReferralStatus.RECEIVED
        assert referral.confirmation_email == "referrer@hospital.org"
        assert referral.form_data == {"diagnosis": "CHF"}
        assert len(referral.id) >= 22
        assert audit_sink.of("referral.submitted")[0].tenant_id == "sunrise"

    def test_submission_by_slug(self, service, make_tenant):
        make_tenant("t-1", slug="sunrise")
        referral = service.submit_public_referral("sunrise", {"referrer_name": "A", "patient_name": "B"})
        assert referral.tenant_id == "t-1"

    @pytest.mark.parametrize("tenant_key", ["closed", "paused", "ghost"])
    def test_unavailable_agencies_refused_identically(self, service, agencies, tenant_key):
        with pytest.raises(PermissionDeniedError) as exc_info:
            service.submit_public_referral(tenant_key, {"referrer_name": "A", "patient_name": "B"})
        assert exc_info.value.message == AGENCY_UNAVAILABLE

    def test_required_fields(self, service, agencies):
        with pytest.raises(ValidationError):
            service.submit_public_referral("sunrise", {"referrer_name": "A", "patient_name": "  "})


class TestPublicStatusLookup:
    """Tests for the public status page."""

    def test_exposes_only_status_fields(self, service, acme_referral):
        view = service.lookup_public_status("acme", acme_referral.id)
        assert set(view) == {"id", "status", "created_at", "updated_at", "status_history"}
        assert view["status"] == "RECEIVED"
        assert view["status_history"] == [{"status": "RECEIVED", "changed_at": "2024-01-01T00:00:00+00:00"}]

    @pytest.mark.security
    def test_other_host_cannot_see_record(self, service, acme_referral):
        with pytest.raises(NotFoundError):
            service.lookup_public_status("sunrise", acme_referral.id)

    def test_unknown_id(self, service, agencies):
        with pytest.raises(NotFoundError):
            service.lookup_public_status("acme", "nope")

    def test_suspended_agency_refused(self, service, db_session, make_tenant):
        make_tenant("t-1", status=SubscriptionStatus.SUSPENDED)
        referral = Referral(tenant_id="t-1", referrer_name="A", patient_name="B")
        db_session.add(referral)
        db_session.flush()
        with pytest.raises(PermissionDeniedError):
            service.lookup_public_status("t-1", referral.id)

# API routes
from referralflow.api.routes import health
from referralflow.api.routes import auth
from referralflow.api.routes import user_agencies
from referralflow.api.routes import tenants
from referralflow.api.routes import referrals
from referralflow.api.routes import public
from referralflow.api.routes import admin_agencies

__all__ = ["health", "auth", "user_agencies", "tenants", "referrals", "public", "admin_agencies"]

"""Service providers for route dependencies. Overridable in tests via app.dependency_overrides."""

from saaskit.db.base import get_session_factory
from saaskit.services.account_service import AccountService
from saaskit.services.app_service import AppService
from saaskit.services.billing_service import BillingService
from saaskit.services.storage import get_avatar_storage


def get_billing_service() -> BillingService:
    return BillingService(get_session_factory())


def get_app_service() -> AppService:
    return AppService(get_session_factory())


def get_account_service() -> AccountService:
    return AccountService(get_session_factory(), get_billing_service(), get_avatar_storage())

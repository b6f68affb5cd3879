# Import models here so Alembic can discover metadata.
from talentloop.models.tenant import Tenant  # noqa: F401
from talentloop.models.user import User  # noqa: F401

# Plans & billing
from talentloop.models.plan import Plan  # noqa: F401
from talentloop.models.subscription import Subscription  # noqa: F401
from talentloop.models.subscription_history import SubscriptionHistory  # noqa: F401
from talentloop.models.stripe_checkout_session import StripeCheckoutSession  # noqa: F401

# Auth support
from talentloop.models.password_reset import PasswordReset  # noqa: F401
from talentloop.models.email_log import EmailLog  # noqa: F401

# RBAC
from talentloop.models.role import Role, Permission, RolePermission  # noqa: F401
from talentloop.models.user_role import UserRole  # noqa: F401

# talentloop/core/enums.py

import enum


class TenantType(str, enum.Enum):
    CANDIDATE = "CANDIDATE"
    COMPANY = "COMPANY"


class SubStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class SubscriptionAction(str, enum.Enum):
    CREATED = "CREATED"
    UPGRADED = "UPGRADED"
    DOWNGRADED = "DOWNGRADED"
    RENEWED = "RENEWED"
    CANCELED = "CANCELED"
    REACTIVATED = "REACTIVATED"
    EXPIRED = "EXPIRED"


class EmailLogType(str, enum.Enum):
    LIMIT_ALERT = "LIMIT_ALERT"


# Shared tenant that holds every candidate account.
CANDIDATES_TENANT_SLUG = "candidates"

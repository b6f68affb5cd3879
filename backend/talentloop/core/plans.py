# ============================
# FILE: talentloop/core/plans.py
# Canonical plan catalogue for Talentloop
# ============================
from __future__ import annotations

from dataclasses import dataclass, field

from talentloop.core.enums import TenantType


@dataclass(frozen=True)
class PlanSpec:
    name: str
    tenant_type: TenantType
    level: int
    price: float
    description: str
    max_users: int | None = None
    max_contacts: int | None = None
    has_api: bool = False
    billing_period_days: int = 30
    trial_duration_hours: int | None = None
    features: tuple[str, ...] = field(default_factory=tuple)


# Candidates (B2C): FREE -> PRO -> PREMIUM
# Companies (B2B): STARTUP -> BUSINESS -> ENTERPRISE
PLAN_CATALOG: dict[str, PlanSpec] = {
    "FREE": PlanSpec(
        name="FREE",
        tenant_type=TenantType.CANDIDATE,
        level=0,
        price=0,
        description="Start your job search",
        max_users=1,
        max_contacts=0,
        billing_period_days=0,
        features=(
            "100 visible jobs per day",
            "10 manual applications per day",
            "Basic AI matching",
            "1 AI cover letter per month",
            "Daily job digest email",
        ),
    ),
    "PRO": PlanSpec(
        name="PRO",
        tenant_type=TenantType.CANDIDATE,
        level=1,
        price=29,
        description="For candidates who want to stand out",
        max_users=1,
        max_contacts=50,
        trial_duration_hours=7 * 24,
        features=(
            "Unlimited jobs",
            "50 applications per day",
            "10 AutoApply per day",
            "Detailed AI matching",
            "20 AI cover letters per month",
            "5 AI resume adaptations per month",
            "Recruiter CRM (50 contacts)",
            "Real-time push notifications",
            "Full reports",
            "Email support",
        ),
    ),
    "PREMIUM": PlanSpec(
        name="PREMIUM",
        tenant_type=TenantType.CANDIDATE,
        level=2,
        price=79,
        description="Maximum power for your job search",
        max_users=1,
        max_contacts=None,
        trial_duration_hours=7 * 24,
        features=(
            "Everything in Pro",
            "Unlimited applications",
            "30 AutoApply per day",
            "AI matching with personalised suggestions",
            "Unlimited cover letters",
            "Unlimited resume adaptations",
            "Unlimited recruiter CRM",
            "Push and WhatsApp notifications",
            "Reports with export",
            "Priority support",
        ),
    ),
    "STARTUP": PlanSpec(
        name="STARTUP",
        tenant_type=TenantType.COMPANY,
        level=1,
        price=299,
        description="Ideal for small companies",
        max_users=2,
        max_contacts=100,
        features=(
            "5 active jobs",
            "2 recruiters",
            "100 applications received per month",
            "Basic filters",
            "Built-in basic ATS",
            "Email support",
        ),
    ),
    "BUSINESS": PlanSpec(
        name="BUSINESS",
        tenant_type=TenantType.COMPANY,
        level=2,
        price=799,
        description="For growing companies",
        max_users=10,
        max_contacts=500,
        features=(
            "20 active jobs",
            "10 recruiters",
            "500 applications per month",
            "Resume database search",
            "Full advanced filters",
            "Full built-in ATS",
            "Job analytics",
            "Company page (employer branding)",
            "Chat support",
            "99.5% SLA",
        ),
    ),
    "ENTERPRISE": PlanSpec(
        name="ENTERPRISE",
        tenant_type=TenantType.COMPANY,
        level=3,
        price=0,  # quoted by sales
        description="Complete solution for large companies",
        max_users=None,
        max_contacts=None,
        has_api=True,
        features=(
            "Unlimited jobs",
            "Unlimited recruiters",
            "Unlimited applications",
            "Full resume database with export",
            "Advanced filters with AI",
            "Custom ATS",
            "Analytics and API",
            "Company page with highlights",
            "Integration API",
            "Dedicated support",
            "99.9% SLA",
        ),
    ),
}

CANDIDATE_PLANS: tuple[str, ...] = ("FREE", "PRO", "PREMIUM")
COMPANY_PLANS: tuple[str, ...] = ("STARTUP", "BUSINESS", "ENTERPRISE")

# Plans that go through sales instead of Stripe checkout
SALES_ASSISTED_PLANS: frozenset[str] = frozenset({"ENTERPRISE"})


def normalize_plan_name(value: str | None) -> str:
    return (value or "").strip().upper()


def get_plan_level(name: str | None) -> int:
    """
    Upgrade ordering within a tenant type. Unknown plans rank lowest.
    """
    spec = PLAN_CATALOG.get(normalize_plan_name(name))
    return spec.level if spec else 0


def is_upgrade(current: str | None, new: str | None) -> bool:
    return get_plan_level(new) > get_plan_level(current)


def plan_names_for_tenant_type(tenant_type: str | TenantType | None) -> tuple[str, ...]:
    t = tenant_type.value if isinstance(tenant_type, TenantType) else (tenant_type or "").upper()
    if t == TenantType.CANDIDATE.value:
        return CANDIDATE_PLANS
    if t == TenantType.COMPANY.value:
        return COMPANY_PLANS
    return CANDIDATE_PLANS + COMPANY_PLANS


def plan_belongs_to(name: str | None, tenant_type: str | TenantType) -> bool:
    return normalize_plan_name(name) in plan_names_for_tenant_type(tenant_type)


def get_plan_features(name: str | None) -> list[str]:
    spec = PLAN_CATALOG.get(normalize_plan_name(name))
    return list(spec.features) if spec else []

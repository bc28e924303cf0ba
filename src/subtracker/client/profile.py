"""Client profile models.

Learn: The local profile mirrors a subset of the server User plus
client-only preferences and a subscription-plan descriptor. Stored as
camelCase JSON under subtracker_user_<id>, the same shape the web app
reads.
"""

import os
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEMO_USER_ID = "local-user-001"
DEMO_EMAIL = "demo@subtracker.ai"
DEMO_NAME = "Demo User"
DEMO_TIMEZONE = "America/New_York"

FREE_PLAN_FEATURES = ["unlimited_pods", "basic_analytics", "data_export"]


class ClientModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class NotificationSettings(ClientModel):
    email_notifications: bool = True
    budget_alerts: bool = True
    subscription_reminders: bool = True
    weekly_reports: bool = False
    alert_threshold: int = Field(80, ge=0, le=100)


class Preferences(ClientModel):
    currency: str = "USD"
    timezone: str = "UTC"
    fiscal_month_start_day: int = Field(1, ge=1, le=28)
    dark_mode: bool = False
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    data_retention_days: int = Field(365, ge=1)


class SubscriptionPlan(ClientModel):
    plan: str = "free"
    valid_until: datetime
    features: list[str] = Field(default_factory=lambda: list(FREE_PLAN_FEATURES))


class ClientProfile(ClientModel):
    id: str
    email: str
    name: str
    created_at: datetime
    updated_at: datetime
    preferences: Preferences = Field(default_factory=Preferences)
    subscription: SubscriptionPlan


class LocalAccount(ClientModel):
    """Entry in the local accounts list (subtracker_users).

    Only what sign-in needs: the profile itself lives under its own key.
    """
    id: str
    email: str
    password_hash: Optional[str] = None


def add_one_year(value: datetime) -> datetime:
    try:
        return value.replace(year=value.year + 1)
    except ValueError:
        # Feb 29 → Feb 28
        return value.replace(year=value.year + 1, day=28)


def runtime_timezone() -> str:
    """Best-effort IANA name of the machine's timezone."""
    tz = os.environ.get("TZ")
    if tz:
        return tz.lstrip(":")
    localtime = os.path.realpath("/etc/localtime")
    if "zoneinfo/" in localtime:
        return localtime.split("zoneinfo/", 1)[1]
    return datetime.now().astimezone().tzname() or "UTC"


def free_plan(created_at: datetime) -> SubscriptionPlan:
    return SubscriptionPlan(plan="free", valid_until=add_one_year(created_at))


def new_profile(
    user_id: str,
    email: str,
    name: str,
    now: datetime,
    timezone: Optional[str] = None,
) -> ClientProfile:
    """A profile with default preferences and a one-year free plan."""
    return ClientProfile(
        id=user_id,
        email=email,
        name=name,
        created_at=now,
        updated_at=now,
        preferences=Preferences(timezone=timezone or runtime_timezone()),
        subscription=free_plan(now),
    )


def demo_profile(now: datetime) -> ClientProfile:
    return new_profile(DEMO_USER_ID, DEMO_EMAIL, DEMO_NAME, now, timezone=DEMO_TIMEZONE)

"""
Key layout. Tenant data lives under `user:{tenant}:`; the user registry
(`users`, `user_by_email:{email}`, `user:{id}:email` ...) is global.
"""

USERS = "users"


def tenant(tenant_id: str, *parts) -> str:
    return ":".join(["user", tenant_id, *[str(p) for p in parts]])


def user_by_email(email: str) -> str:
    return f"user_by_email:{email.lower()}"


def user_field(user_id: str, field: str) -> str:
    return f"user:{user_id}:{field}"


# Tenant config

def ai_config_field(tenant_id: str, field: str) -> str:
    return tenant(tenant_id, field)


def editor_field(tenant_id: str, field: str) -> str:
    return tenant(tenant_id, "editor", field)


def generation_period(tenant_id: str, kind: str) -> str:
    # Shared by the AI config and the editor
    return tenant(tenant_id, f"{kind}_generation_period_minutes")


# Reporters

def reporters(tenant_id: str) -> str:
    return tenant(tenant_id, "reporters")


def reporter_field(tenant_id: str, reporter_id: str, field: str) -> str:
    return tenant(tenant_id, "reporter", reporter_id, field)


# Articles and events

def articles_by_reporter(tenant_id: str, reporter_id: str) -> str:
    return tenant(tenant_id, "articles", reporter_id)


def all_articles(tenant_id: str) -> str:
    return tenant(tenant_id, "articles")


def article_field(tenant_id: str, article_id: str, field: str) -> str:
    return tenant(tenant_id, "article", article_id, field)


def events_by_reporter(tenant_id: str, reporter_id: str) -> str:
    return tenant(tenant_id, "events", reporter_id)


def all_events(tenant_id: str) -> str:
    return tenant(tenant_id, "events")


def events_by_update(tenant_id: str) -> str:
    return tenant(tenant_id, "events_by_update")


def event_field(tenant_id: str, event_id: str, field: str) -> str:
    return tenant(tenant_id, "event", event_id, field)


# Editions

def editions(tenant_id: str) -> str:
    return tenant(tenant_id, "editions")


def edition_field(tenant_id: str, edition_id: str, field: str) -> str:
    return tenant(tenant_id, "edition", edition_id, field)


def daily_editions(tenant_id: str) -> str:
    return tenant(tenant_id, "daily_editions")


def daily_edition_field(tenant_id: str, daily_edition_id: str, field: str) -> str:
    return tenant(tenant_id, "daily_edition", daily_edition_id, field)


# Ads

def ads(tenant_id: str) -> str:
    return tenant(tenant_id, "ads")


def ads_by_time(tenant_id: str) -> str:
    return tenant(tenant_id, "ads_by_time")


def ad_field(tenant_id: str, ad_id: str, field: str) -> str:
    return tenant(tenant_id, "ad", ad_id, field)


# Usage, jobs, KPIs

def usage_total(tenant_id: str, field: str) -> str:
    return tenant(tenant_id, "usage", "total", field)


def usage_daily(tenant_id: str, day: str, field: str) -> str:
    return tenant(tenant_id, "usage", day, field)


def usage_days(tenant_id: str) -> str:
    return tenant(tenant_id, "usage", "days")


def job_field(tenant_id: str, job_name: str, field: str) -> str:
    return tenant(tenant_id, "job", job_name, field)


def kpi_value(tenant_id: str, name: str) -> str:
    return tenant(tenant_id, "kpi", name, "value")


def kpi_last_updated(tenant_id: str, name: str) -> str:
    return tenant(tenant_id, "kpi", name, "last_updated")

"""Key/value settings store for runtime feature flags and thresholds."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import SystemSetting

DEFAULT_SETTINGS: dict[str, tuple[str, str, str]] = {
    # key: (value, description, category)
    "alert_email_enabled": ("true", "Enable email alerts", "notifications"),
    "alert_sms_enabled": ("false", "Enable SMS alerts", "notifications"),
    "alert_email_recipients": ("", "Comma-separated alert email recipients", "notifications"),
    "alert_sms_recipients": ("", "Comma-separated alert SMS recipients", "notifications"),
    "hour_anomaly_jump_threshold": ("100", "Flag if hours increase by more than this in one reading", "anomaly"),
}

_TRUTHY = {"1", "true", "yes", "on"}


async def get_setting(db: AsyncSession, key: str, default: str | None = None) -> str | None:
    result = await db.execute(select(SystemSetting.value).where(SystemSetting.key == key))
    value = result.scalar_one_or_none()
    if value is not None:
        return value
    if default is not None:
        return default
    fallback = DEFAULT_SETTINGS.get(key)
    return fallback[0] if fallback else None


async def get_bool_setting(db: AsyncSession, key: str, default: bool = False) -> bool:
    value = await get_setting(db, key)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


async def get_float_setting(db: AsyncSession, key: str, default: float) -> float:
    value = await get_setting(db, key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


async def get_list_setting(db: AsyncSession, key: str) -> list[str]:
    value = await get_setting(db, key) or ""
    return [item.strip() for item in value.split(",") if item.strip()]


async def set_setting(db: AsyncSession, key: str, value: str) -> SystemSetting:
    row = await db.get(SystemSetting, key)
    if row is None:
        _, description, category = DEFAULT_SETTINGS.get(key, (value, None, "general"))
        row = SystemSetting(key=key, value=value, description=description, category=category)
        db.add(row)
    else:
        row.value = value
    await db.flush()
    return row

"""
Runtime application settings stored in the app_settings table.

Settings are read per request through an explicit provider instead of
module-level state, so every caller sees the current stored values.
"""
import logging
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.models.app_setting import AppSetting

logger = logging.getLogger(__name__)

MAX_CONSUMERS_KEY = "max_consumers_per_reseller"
MIN_INVOICE_AMOUNT_KEY = "min_invoice_amount"
REQUIRE_APPROVAL_KEY = "require_reseller_approval"
ALLOW_PRICE_OVERRIDE_KEY = "allow_reseller_price_override"
DEFAULT_COMMISSION_KEY = "default_reseller_commission"

RESELLER_SETTING_KEYS = (
    MAX_CONSUMERS_KEY,
    MIN_INVOICE_AMOUNT_KEY,
    REQUIRE_APPROVAL_KEY,
    ALLOW_PRICE_OVERRIDE_KEY,
)

SETTING_DESCRIPTIONS = {
    MAX_CONSUMERS_KEY: "Maximum number of consumers a reseller can create",
    MIN_INVOICE_AMOUNT_KEY: "Minimum invoice total",
    REQUIRE_APPROVAL_KEY: "New resellers start as pending until approved",
    ALLOW_PRICE_OVERRIDE_KEY: "Allow resellers to set prices above catalog",
    DEFAULT_COMMISSION_KEY: "Default commission percentage for resellers",
}


@dataclass
class ResellerSettings:
    max_consumers_per_reseller: Optional[int] = None
    min_invoice_amount: Optional[Decimal] = None
    require_reseller_approval: bool = False
    allow_reseller_price_override: bool = True

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.min_invoice_amount is not None:
            data["min_invoice_amount"] = float(self.min_invoice_amount)
        return data


def _blank(value: Optional[str]) -> bool:
    return value is None or value.strip() == ""


def _parse_int(value: Optional[str]) -> Optional[int]:
    if _blank(value):
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _parse_decimal(value: Optional[str]) -> Optional[Decimal]:
    if _blank(value):
        return None
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        return None


def parse_reseller_settings(values: dict) -> ResellerSettings:
    """Build ResellerSettings from raw stored strings"""
    return ResellerSettings(
        max_consumers_per_reseller=_parse_int(values.get(MAX_CONSUMERS_KEY)),
        min_invoice_amount=_parse_decimal(values.get(MIN_INVOICE_AMOUNT_KEY)),
        require_reseller_approval=(values.get(REQUIRE_APPROVAL_KEY) or "").strip() == "true",
        # Only an explicit "false" disables overrides
        allow_reseller_price_override=(values.get(ALLOW_PRICE_OVERRIDE_KEY) or "").strip() != "false",
    )


def _to_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SettingsProvider:
    """Explicit async access to the app_settings key/value store"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fetch(self, keys) -> dict:
        result = await self.db.execute(
            select(AppSetting).where(AppSetting.setting_key.in_(keys))
        )
        return {row.setting_key: row.setting_value for row in result.scalars().all()}

    async def get_reseller_settings(self) -> ResellerSettings:
        try:
            values = await self._fetch(RESELLER_SETTING_KEYS)
        except SQLAlchemyError:
            logger.exception("Failed to load reseller settings, using defaults")
            return ResellerSettings()
        return parse_reseller_settings(values)

    async def get_default_commission(self) -> Optional[Decimal]:
        """Default reseller commission percent, or None if unset or unparsable"""
        values = await self._fetch([DEFAULT_COMMISSION_KEY])
        return _parse_decimal(values.get(DEFAULT_COMMISSION_KEY))

    async def _upsert(self, key: str, value) -> None:
        result = await self.db.execute(select(AppSetting).where(AppSetting.setting_key == key))
        row = result.scalar_one_or_none()
        if row is None:
            row = AppSetting(setting_key=key, description=SETTING_DESCRIPTIONS.get(key))
            self.db.add(row)
        row.setting_value = _to_text(value)

    async def set_default_commission(self, rate) -> None:
        await self._upsert(DEFAULT_COMMISSION_KEY, rate)
        await self.db.flush()

    async def update_reseller_settings(self, **values) -> ResellerSettings:
        """Persist the given reseller settings; unknown keys are ignored"""
        for key, value in values.items():
            if key in RESELLER_SETTING_KEYS:
                await self._upsert(key, value)
        await self.db.flush()
        return parse_reseller_settings(await self._fetch(RESELLER_SETTING_KEYS))

    async def ensure_defaults(self) -> None:
        """Create blank rows for reseller settings that don't exist yet"""
        existing = await self._fetch(RESELLER_SETTING_KEYS)
        for key in RESELLER_SETTING_KEYS:
            if key not in existing:
                self.db.add(AppSetting(
                    setting_key=key,
                    setting_value="",
                    description=SETTING_DESCRIPTIONS[key],
                ))
        await self.db.flush()

"""
Per-tenant payment policy: annual fee and donation settings.

Reads fall back to in-memory defaults when a tenant has never saved settings;
no row is created until the first update.
"""

import logging
from numbers import Integral
from typing import Any, Dict, Mapping, Optional

from bs4 import BeautifulSoup
from sqlalchemy.orm import Session

from alumni_payments.errors import SettingsError
from alumni_payments.models import PaymentSettings
from alumni_payments.validation import MAX_PAYMENT_AMOUNT, DonationSettings

logger = logging.getLogger(__name__)

BOOLEAN_FIELDS = (
    "annual_fee_enabled",
    "donation_enabled",
    "show_donor_list",
    "allow_anonymous",
)
INTEGER_FIELDS = (
    "annual_fee_amount",
    "donation_min_amount",
    "donation_max_amount",
)
SETTINGS_FIELDS = (
    "annual_fee_enabled",
    "annual_fee_amount",
    "annual_fee_description",
    "donation_enabled",
    "donation_min_amount",
    "donation_max_amount",
    "donation_presets",
    "show_donor_list",
    "allow_anonymous",
)


def default_payment_settings() -> Dict[str, Any]:
    return {
        "annual_fee_enabled": False,
        "annual_fee_amount": 5000,
        "annual_fee_description": None,
        "donation_enabled": False,
        "donation_min_amount": 1000,
        "donation_max_amount": 1_000_000,
        "donation_presets": [1000, 3000, 5000, 10000],
        "show_donor_list": True,
        "allow_anonymous": True,
    }


def settings_to_dict(settings) -> Dict[str, Any]:
    if settings is None:
        return default_payment_settings()
    if isinstance(settings, Mapping):
        source = settings
        return {name: source.get(name, default) for name, default in default_payment_settings().items()}
    result = {name: getattr(settings, name) for name in SETTINGS_FIELDS}
    result["donation_presets"] = list(result["donation_presets"] or [])
    return result


def merge_settings(current, patch: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Three-way merge: defaults, then the current settings (row, dict or None),
    then the keys present in ``patch``.
    """
    merged = default_payment_settings()
    merged.update(settings_to_dict(current))
    for name, value in patch.items():
        merged[name] = list(value) if name == "donation_presets" and isinstance(value, list) else value
    return merged


def sanitize_text(value: str) -> str:
    """Strip script/style blocks and any remaining markup."""
    soup = BeautifulSoup(value, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text().strip()


def donation_settings_from(settings) -> DonationSettings:
    values = settings_to_dict(settings)
    return DonationSettings(
        min_amount=values["donation_min_amount"],
        max_amount=values["donation_max_amount"],
        presets=list(values["donation_presets"]),
    )


def _is_int(value) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool)


def _check_types(patch: Mapping[str, Any]) -> None:
    unknown = sorted(set(patch) - set(SETTINGS_FIELDS))
    if unknown:
        raise SettingsError(f"Unknown payment setting: {unknown[0]}")

    for name in BOOLEAN_FIELDS:
        if name in patch and not isinstance(patch[name], bool):
            raise SettingsError(f"{name} must be a boolean")

    for name in INTEGER_FIELDS:
        if name in patch and not _is_int(patch[name]):
            raise SettingsError(f"{name} must be an integer")

    description = patch.get("annual_fee_description")
    if description is not None and not isinstance(description, str):
        raise SettingsError("annual_fee_description must be a string")


def validate_settings_update(patch: Mapping[str, Any], effective: Mapping[str, Any]) -> None:
    """
    Check a settings patch against the merged result it would produce.

    :raises SettingsError: on the first rule violated
    """
    _check_types(patch)

    annual_fee = patch.get("annual_fee_amount")
    if annual_fee is not None:
        if annual_fee < 0:
            raise SettingsError("Annual fee amount cannot be negative")
        if annual_fee > MAX_PAYMENT_AMOUNT:
            raise SettingsError(f"Annual fee amount cannot exceed {MAX_PAYMENT_AMOUNT:,} yen")

    min_amount = patch.get("donation_min_amount")
    if min_amount is not None and min_amount <= 0:
        raise SettingsError("Donation minimum amount must be greater than 0")

    effective_min = effective["donation_min_amount"]
    effective_max = effective["donation_max_amount"]
    if effective_min > effective_max:
        raise SettingsError("Donation minimum amount cannot be greater than maximum amount")

    presets = effective["donation_presets"]
    if not isinstance(presets, list):
        raise SettingsError("Donation presets must be an array")
    for preset in presets:
        if not _is_int(preset):
            raise SettingsError("Donation presets must be an array of numbers")
        if preset < effective_min or preset > effective_max:
            raise SettingsError(
                f"Donation preset {preset} is outside the allowed range ({effective_min} - {effective_max})"
            )


class PaymentSettingsStore:
    def __init__(self, db: Session):
        self.db = db

    def _find(self, tenant_id: str) -> Optional[PaymentSettings]:
        return self.db.query(PaymentSettings).filter_by(tenant_id=tenant_id).first()

    def get_settings(self, tenant_id: str) -> Dict[str, Any]:
        """Persisted settings for the tenant, or the defaults (not persisted)."""
        if not tenant_id:
            raise SettingsError("tenantId is required")
        return settings_to_dict(self._find(tenant_id))

    def update_settings(self, tenant_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validate ``patch`` against the merged settings, then upsert.

        Nothing is written when validation fails. An existing row only has the
        supplied fields changed; a new row gets defaults for everything else.
        """
        if not tenant_id:
            raise SettingsError("tenantId is required")

        patch = dict(patch)
        _check_types(patch)
        if patch.get("annual_fee_description"):
            patch["annual_fee_description"] = sanitize_text(patch["annual_fee_description"])

        row = self._find(tenant_id)
        effective = merge_settings(row, patch)
        validate_settings_update(patch, effective)

        if row is None:
            row = PaymentSettings(tenant_id=tenant_id, **merge_settings(None, patch))
            self.db.add(row)
            logger.info("Created payment settings for tenant %s", tenant_id)
        else:
            for name, value in patch.items():
                setattr(row, name, list(value) if name == "donation_presets" else value)
            logger.info("Updated payment settings for tenant %s: %s", tenant_id, sorted(patch))

        self.db.commit()
        self.db.refresh(row)
        return settings_to_dict(row)

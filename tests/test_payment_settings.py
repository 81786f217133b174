import pytest

from alumni_payments.errors import SettingsError
from alumni_payments.models import PaymentSettings
from alumni_payments.payment_settings import (
    PaymentSettingsStore,
    default_payment_settings,
    donation_settings_from,
    merge_settings,
    sanitize_text,
)


def test_get_settings_returns_defaults_without_writing(db, tenant):
    settings = PaymentSettingsStore(db).get_settings("t1")

    assert settings == default_payment_settings()
    assert settings["donation_presets"] == [1000, 3000, 5000, 10000]
    assert db.query(PaymentSettings).count() == 0


def test_get_settings_requires_tenant_id(db):
    with pytest.raises(SettingsError, match="tenantId is required"):
        PaymentSettingsStore(db).get_settings("")


def test_merge_settings_is_three_way():
    current = dict(default_payment_settings(), donation_min_amount=2000, show_donor_list=False)
    merged = merge_settings(current, {"donation_max_amount": 50_000})

    assert merged["donation_min_amount"] == 2000
    assert merged["donation_max_amount"] == 50_000
    assert merged["show_donor_list"] is False
    assert merged["annual_fee_amount"] == 5000


def test_merge_settings_without_current_uses_defaults():
    merged = merge_settings(None, {"annual_fee_enabled": True})
    assert merged == dict(default_payment_settings(), annual_fee_enabled=True)


def test_first_update_creates_full_row(db, tenant):
    store = PaymentSettingsStore(db)
    settings = store.update_settings("t1", {"annual_fee_enabled": True, "annual_fee_amount": 8000})

    assert settings["annual_fee_enabled"] is True
    assert settings["annual_fee_amount"] == 8000
    assert settings["donation_min_amount"] == 1000

    row = db.query(PaymentSettings).filter_by(tenant_id="t1").one()
    assert row.donation_presets == [1000, 3000, 5000, 10000]
    assert row.allow_anonymous is True


def test_update_patches_only_supplied_fields(db, tenant):
    store = PaymentSettingsStore(db)
    store.update_settings("t1", {"annual_fee_amount": 8000, "donation_enabled": True})
    settings = store.update_settings("t1", {"show_donor_list": False})

    assert settings["annual_fee_amount"] == 8000
    assert settings["donation_enabled"] is True
    assert settings["show_donor_list"] is False
    assert db.query(PaymentSettings).count() == 1


@pytest.mark.parametrize(
    "patch, message",
    [
        ({"annual_fee_amount": -1}, "Annual fee amount cannot be negative"),
        ({"annual_fee_amount": 10_000_001}, "Annual fee amount cannot exceed 10,000,000 yen"),
        ({"donation_min_amount": 0}, "Donation minimum amount must be greater than 0"),
        ({"donation_min_amount": 50_000, "donation_max_amount": 10_000}, "cannot be greater than maximum"),
        ({"donation_presets": [500, 3000]}, "Donation preset 500 is outside the allowed range"),
        ({"donation_presets": "1000,2000"}, "Donation presets must be an array"),
        ({"donation_presets": [1000, "2000"]}, "array of numbers"),
        ({"annual_fee_enabled": "yes"}, "must be a boolean"),
        ({"annual_fee_amount": 10.5}, "must be an integer"),
        ({"surprise": 1}, "Unknown payment setting"),
    ],
)
def test_invalid_update_is_rejected(db, tenant, patch, message):
    with pytest.raises(SettingsError, match=message):
        PaymentSettingsStore(db).update_settings("t1", patch)
    assert db.query(PaymentSettings).count() == 0


def test_invalid_update_leaves_persisted_row_unchanged(db, tenant):
    store = PaymentSettingsStore(db)
    before = store.update_settings("t1", {"donation_min_amount": 2000, "donation_max_amount": 20_000, "donation_presets": [2000, 5000]})

    with pytest.raises(SettingsError):
        store.update_settings("t1", {"donation_min_amount": 50_000, "donation_max_amount": 10_000})

    db.expire_all()
    assert store.get_settings("t1") == before


def test_min_max_checked_against_persisted_values(db, tenant):
    store = PaymentSettingsStore(db)
    store.update_settings("t1", {"donation_max_amount": 5000, "donation_presets": [1000, 3000, 5000]})

    with pytest.raises(SettingsError, match="cannot be greater than maximum"):
        store.update_settings("t1", {"donation_min_amount": 6000})


def test_presets_checked_against_effective_range(db, tenant):
    store = PaymentSettingsStore(db)
    # Default presets include 10000, above the new maximum
    with pytest.raises(SettingsError, match="Donation preset 10000 is outside the allowed range \\(1000 - 5000\\)"):
        store.update_settings("t1", {"donation_max_amount": 5000})

    settings = store.update_settings("t1", {"donation_max_amount": 5000, "donation_presets": [1000, 5000]})
    assert settings["donation_presets"] == [1000, 5000]


def test_description_is_stripped_of_markup(db, tenant):
    settings = PaymentSettingsStore(db).update_settings(
        "t1", {"annual_fee_description": "  <b>Annual</b> dues<script>alert('x')</script> "}
    )
    assert settings["annual_fee_description"] == "Annual dues"


def test_update_requires_tenant_id(db):
    with pytest.raises(SettingsError, match="tenantId is required"):
        PaymentSettingsStore(db).update_settings("", {"annual_fee_enabled": True})


def test_sanitize_text():
    assert sanitize_text("<p>Hello <i>world</i></p>") == "Hello world"
    assert sanitize_text("<style>p{}</style>plain") == "plain"
    assert sanitize_text("no markup") == "no markup"


def test_donation_settings_from_defaults():
    donation = donation_settings_from(None)
    assert donation.min_amount == 1000
    assert donation.max_amount == 1_000_000
    assert donation.presets == [1000, 3000, 5000, 10000]

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from alumni_payments.admin import export_payments_csv, get_payment_by_id, get_payment_stats, list_payments
from alumni_payments.auth import CurrentUser, TenantRole, get_current_user, require_tenant_role
from alumni_payments.checkout import PROVIDER_ERROR, CheckoutParams, CheckoutSessionFactory
from alumni_payments.config import get_settings
from alumni_payments.database import get_db
from alumni_payments.errors import AmountError, CheckoutError, SettingsError
from alumni_payments.models import PaymentStatus, PaymentType, Tenant
from alumni_payments.payment_settings import PaymentSettingsStore, donation_settings_from
from alumni_payments.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentOut,
    PaymentPageResponse,
    PaymentSettingsResponse,
    PaymentSettingsUpdate,
    PaymentStatsResponse,
)
from alumni_payments.stats import StatsAggregator
from alumni_payments.stripe_gateway import StripeGateway
from alumni_payments.validation import validate_donation_amount

logger = logging.getLogger(__name__)

router = APIRouter()


def get_stripe_gateway(request: Request) -> StripeGateway:
    gateway = getattr(request.app.state, "stripe_gateway", None)
    if gateway is None:
        logger.error("STRIPE_SECRET_KEY is not configured")
        raise HTTPException(status_code=500, detail={"error": "Payment provider is not configured"})
    return gateway


def _get_tenant_or_404(db: Session, tenant_id: str) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail={"error": "Tenant not found"})
    return tenant


# ──────────────── Checkout ────────────────

@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    # Donations are open to guests; everything else needs a signed-in member
    if request.type != PaymentType.DONATION and user is None:
        raise HTTPException(status_code=401, detail={"error": "Authentication required for this payment type"})

    tenant = _get_tenant_or_404(db, request.tenant_id)

    if request.type == PaymentType.DONATION:
        settings = PaymentSettingsStore(db).get_settings(tenant.id)
        try:
            validate_donation_amount(request.amount, donation_settings_from(settings))
        except AmountError:
            raise HTTPException(status_code=400, detail={"error": "Amount is outside the allowed donation range"})

    base_url = get_settings().app_url
    params = CheckoutParams(
        tenant_id=tenant.id,
        type=request.type,
        amount=request.amount,
        success_url=f"{base_url}/{tenant.subdomain}/payment/success",
        cancel_url=f"{base_url}/{tenant.subdomain}/payment/cancel",
        description=request.description,
        is_anonymous=bool(request.is_anonymous),
        event_id=request.event_id,
        customer_email=user.email if user else None,
    )

    try:
        result = CheckoutSessionFactory(db, gateway).create_checkout_session(params)
    except CheckoutError as exc:
        if exc.not_found:
            raise HTTPException(status_code=404, detail={"error": exc.message})
        if exc.code == PROVIDER_ERROR:
            raise HTTPException(status_code=500, detail={"error": exc.message})
        raise HTTPException(status_code=400, detail={"error": exc.message})
    except Exception:
        logger.exception("Checkout session creation failed for tenant %s", tenant.id)
        raise HTTPException(status_code=500, detail={"error": "Failed to create checkout session"})

    return CheckoutResponse(session_id=result.session_id, url=result.url)


# ──────────────── Settings ────────────────

@router.get("/payment-settings", response_model=PaymentSettingsResponse)
def read_payment_settings(tenant_id: Optional[str] = Query(None, alias="tenantId"), db: Session = Depends(get_db)):
    if not tenant_id:
        raise HTTPException(status_code=400, detail={"error": "tenantId is required"})
    _get_tenant_or_404(db, tenant_id)
    return PaymentSettingsStore(db).get_settings(tenant_id)


@router.put("/tenants/{tenant_id}/payment-settings", response_model=PaymentSettingsResponse)
def update_payment_settings(
    tenant_id: str,
    request: PaymentSettingsUpdate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_tenant_role(TenantRole.ADMIN)),
):
    _get_tenant_or_404(db, tenant_id)
    try:
        settings = PaymentSettingsStore(db).update_settings(tenant_id, request.model_dump(exclude_unset=True))
    except SettingsError as exc:
        raise HTTPException(status_code=400, detail={"error": exc.message})
    logger.info("Payment settings for tenant %s updated by %s", tenant_id, user.id)
    return settings


# ──────────────── Donor list ────────────────

@router.get("/tenants/{tenant_id}/donors")
def read_donor_list(tenant_id: str, limit: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    _get_tenant_or_404(db, tenant_id)
    if not PaymentSettingsStore(db).get_settings(tenant_id)["show_donor_list"]:
        raise HTTPException(status_code=404, detail={"error": "Donor list is not public"})
    stats = StatsAggregator(db).calculate_donor_stats(tenant_id, limit=limit, exclude_anonymous=True)
    return {
        "donors": [
            {"name": donor.name, "totalAmount": donor.total_amount, "count": donor.count}
            for donor in stats.top_donors
        ],
        "uniqueDonorCount": stats.unique_donor_count,
    }


# ──────────────── Payments (admin) ────────────────

@router.get("/tenants/{tenant_id}/payments", response_model=PaymentPageResponse)
def read_payments(
    tenant_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[PaymentStatus] = None,
    type: Optional[PaymentType] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_tenant_role(TenantRole.EDITOR)),
):
    result = list_payments(db, tenant_id, page, limit, status, type, start_date, end_date)
    return PaymentPageResponse(
        payments=[PaymentOut.model_validate(payment) for payment in result.payments],
        total=result.total,
        page=result.page,
        total_pages=result.total_pages,
    )


@router.get("/tenants/{tenant_id}/payments/export")
def export_payments(
    tenant_id: str,
    status: Optional[PaymentStatus] = None,
    type: Optional[PaymentType] = None,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_tenant_role(TenantRole.ADMIN)),
):
    content = export_payments_csv(db, tenant_id, status, type, start_date, end_date)
    return PlainTextResponse(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="payments-{tenant_id}.csv"'},
    )


@router.get(
    "/tenants/{tenant_id}/payments/stats",
    response_model=PaymentStatsResponse,
    response_model_exclude_none=True,
)
def read_payment_stats(
    tenant_id: str,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    group_by: Optional[Literal["month", "type"]] = Query(None, alias="groupBy"),
    compare_previous: bool = Query(False, alias="comparePrevious"),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_tenant_role(TenantRole.EDITOR)),
):
    return get_payment_stats(db, tenant_id, start_date, end_date, group_by, compare_previous)


@router.get("/tenants/{tenant_id}/payments/{payment_id}", response_model=PaymentOut)
def read_payment(
    tenant_id: str,
    payment_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(require_tenant_role(TenantRole.EDITOR)),
):
    payment = get_payment_by_id(db, tenant_id, payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail={"error": "Payment not found"})
    return PaymentOut.model_validate(payment)

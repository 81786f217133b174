"""
Tenant-admin views over payments: paginated listing, CSV export and the
combined stats report shown on the payments dashboard.
"""

import csv
import io
import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Query, Session

from alumni_payments.models import Payment, PaymentStatus, PaymentType
from alumni_payments.stats import StatsAggregator

CSV_HEADERS = ["ID", "Type", "Amount", "Status", "Payer name", "Email", "Created", "Completed"]


@dataclass
class PaymentPage:
    payments: List[Payment]
    total: int
    page: int
    total_pages: int


def _filtered(
    db: Session,
    tenant_id: str,
    status: Optional[PaymentStatus] = None,
    payment_type: Optional[PaymentType] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Query:
    query = db.query(Payment).filter(Payment.tenant_id == tenant_id)
    if status is not None:
        query = query.filter(Payment.status == status)
    if payment_type is not None:
        query = query.filter(Payment.type == payment_type)
    if start_date is not None:
        query = query.filter(Payment.created_at >= start_date)
    if end_date is not None:
        query = query.filter(Payment.created_at <= end_date)
    return query


def list_payments(
    db: Session,
    tenant_id: str,
    page: int = 1,
    limit: int = 20,
    status: Optional[PaymentStatus] = None,
    payment_type: Optional[PaymentType] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> PaymentPage:
    query = _filtered(db, tenant_id, status, payment_type, start_date, end_date)
    total = query.count()
    payments = (
        query.order_by(Payment.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return PaymentPage(payments=payments, total=total, page=page, total_pages=math.ceil(total / limit))


def get_payment_by_id(db: Session, tenant_id: str, payment_id: str) -> Optional[Payment]:
    payment = db.get(Payment, payment_id)
    if payment is None or payment.tenant_id != tenant_id:
        return None
    return payment


def export_payments_csv(
    db: Session,
    tenant_id: str,
    status: Optional[PaymentStatus] = None,
    payment_type: Optional[PaymentType] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> str:
    payments = (
        _filtered(db, tenant_id, status, payment_type, start_date, end_date)
        .order_by(Payment.created_at.desc())
        .all()
    )

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for payment in payments:
        writer.writerow(
            [
                payment.id,
                PaymentType(payment.type).value,
                payment.amount,
                PaymentStatus(payment.status).value,
                "Anonymous" if payment.is_anonymous else (payment.payer_name or ""),
                "" if payment.is_anonymous else (payment.payer_email or ""),
                payment.created_at.isoformat(),
                payment.completed_at.isoformat() if payment.completed_at else "",
            ]
        )
    return buffer.getvalue()


def get_payment_stats(
    db: Session,
    tenant_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    group_by: Optional[str] = None,
    compare_previous: bool = False,
) -> Dict[str, Any]:
    """
    Dashboard report: totals for the range, a breakdown by type (default) or
    by month, and optionally the change against the previous period.
    """
    aggregator = StatsAggregator(db)
    current = aggregator.calculate_payment_stats(tenant_id, start_date=start_date, end_date=end_date)
    result: Dict[str, Any] = {
        "total_amount": current.total_amount,
        "total_count": current.total_count,
    }

    if group_by in (None, "type"):
        result["by_type"] = [
            {"type": entry.type.value, "amount": entry.amount, "count": entry.count}
            for entry in aggregator.calculate_type_breakdown(tenant_id, start_date=start_date, end_date=end_date)
        ]

    if group_by == "month":
        year = start_date.year if start_date else datetime.now().year
        result["by_month"] = [
            {"month": entry.month, "amount": entry.amount, "count": entry.count}
            for entry in aggregator.calculate_monthly_breakdown(tenant_id, year)
        ]

    if compare_previous and start_date and end_date:
        comparison = aggregator.compare_previous(tenant_id, start_date, end_date)
        result["comparison"] = {
            "amount_change": comparison.amount_change,
            "count_change": comparison.count_change,
            "previous": asdict(comparison.previous),
        }

    return result

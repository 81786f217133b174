"""
Payment reporting for tenant administrators.

Only realized revenue is reported by default: aggregates filter on COMPLETED
unless told otherwise. Refund amounts are not netted out; a refunded payment
simply leaves the COMPLETED set.
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from alumni_payments.models import Payment, PaymentStatus, PaymentType
from alumni_payments.validation import is_zero_decimal, round_half_up

TYPE_LABELS = {
    PaymentType.ANNUAL_FEE: "Annual fee",
    PaymentType.DONATION: "Donation",
    PaymentType.EVENT_FEE: "Event fee",
    PaymentType.OTHER: "Other",
}

MONTH_LABELS = [calendar.month_abbr[month] for month in range(1, 13)]


@dataclass
class PaymentStats:
    total_amount: int = 0
    total_count: int = 0
    average_amount: float = 0


@dataclass
class MonthlyBreakdown:
    month: str
    label: str
    amount: int = 0
    count: int = 0


@dataclass
class TypeBreakdown:
    type: PaymentType
    label: str
    amount: int
    count: int
    percentage: int


@dataclass
class Donor:
    email: str
    name: Optional[str]
    total_amount: int
    count: int


@dataclass
class DonorStats:
    top_donors: List[Donor] = field(default_factory=list)
    unique_donor_count: int = 0


@dataclass
class PeriodComparison:
    amount_change: int
    count_change: int
    previous: PaymentStats


@dataclass
class DateRange:
    start_date: datetime
    end_date: datetime


def percent_change(current, previous) -> int:
    """Whole-percent change; 0 when there is nothing to compare against."""
    if not previous:
        return 0
    return round_half_up((current - previous) / previous * 100)


def previous_period(start_date: datetime, end_date: datetime) -> DateRange:
    """The window of equal length ending 1ms before ``start_date``."""
    duration = end_date - start_date
    prev_end = start_date - timedelta(milliseconds=1)
    return DateRange(start_date=prev_end - duration, end_date=prev_end)


def get_date_range_for_period(period: str, reference: Optional[datetime] = None) -> DateRange:
    reference = reference or datetime.now()
    year, month = reference.year, reference.month

    if period == "month":
        last_day = calendar.monthrange(year, month)[1]
        return DateRange(datetime(year, month, 1), datetime(year, month, last_day, 23, 59, 59))

    if period == "last30days":
        return DateRange(reference - timedelta(days=30), reference)

    if period == "fiscalYear":
        # Fiscal year runs April 1 - March 31
        start_year = year if month >= 4 else year - 1
        return DateRange(datetime(start_year, 4, 1), datetime(start_year + 1, 3, 31, 23, 59, 59))

    return DateRange(datetime(year, 1, 1), datetime(year, 12, 31, 23, 59, 59))


def format_currency(amount, currency: str = "jpy") -> str:
    if currency.lower() == "jpy":
        formatted = f"¥{abs(amount):,}"
        return f"-{formatted}" if amount < 0 else formatted
    if is_zero_decimal(currency):
        return f"{currency.upper()} {amount:,}"
    return f"{currency.upper()} {amount:,.2f}"


class StatsAggregator:
    def __init__(self, db: Session):
        self.db = db

    def calculate_payment_stats(
        self,
        tenant_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        status: PaymentStatus = PaymentStatus.COMPLETED,
    ) -> PaymentStats:
        """Sum, count and average of payments created within the (inclusive) range."""
        query = self.db.query(
            func.coalesce(func.sum(Payment.amount), 0),
            func.count(Payment.id),
            func.avg(Payment.amount),
        ).filter(Payment.tenant_id == tenant_id, Payment.status == (status or PaymentStatus.COMPLETED))
        if start_date is not None:
            query = query.filter(Payment.created_at >= start_date)
        if end_date is not None:
            query = query.filter(Payment.created_at <= end_date)

        total_amount, total_count, average_amount = query.one()
        return PaymentStats(
            total_amount=int(total_amount or 0),
            total_count=int(total_count or 0),
            average_amount=float(average_amount) if average_amount is not None else 0,
        )

    def calculate_monthly_breakdown(self, tenant_id: str, year: int) -> List[MonthlyBreakdown]:
        months = [
            MonthlyBreakdown(month=f"{year}-{index + 1:02d}", label=label)
            for index, label in enumerate(MONTH_LABELS)
        ]

        rows = (
            self.db.query(Payment.amount, Payment.completed_at)
            .filter(
                Payment.tenant_id == tenant_id,
                Payment.status == PaymentStatus.COMPLETED,
                Payment.completed_at >= datetime(year, 1, 1),
                Payment.completed_at < datetime(year + 1, 1, 1),
            )
            .all()
        )
        for amount, completed_at in rows:
            bucket = months[completed_at.month - 1]
            bucket.amount += amount
            bucket.count += 1

        return months

    def calculate_type_breakdown(
        self,
        tenant_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[TypeBreakdown]:
        query = self.db.query(
            Payment.type,
            func.coalesce(func.sum(Payment.amount), 0),
            func.count(Payment.id),
        ).filter(Payment.tenant_id == tenant_id, Payment.status == PaymentStatus.COMPLETED)
        if start_date is not None:
            query = query.filter(Payment.completed_at >= start_date)
        if end_date is not None:
            query = query.filter(Payment.completed_at <= end_date)

        totals = {
            PaymentType(payment_type): (int(amount), int(count))
            for payment_type, amount, count in query.group_by(Payment.type).all()
        }
        if not totals:
            return []

        total_amount = sum(amount for amount, _ in totals.values())
        breakdown = []
        for payment_type in PaymentType:
            if payment_type not in totals:
                continue
            amount, count = totals[payment_type]
            breakdown.append(
                TypeBreakdown(
                    type=payment_type,
                    label=TYPE_LABELS[payment_type],
                    amount=amount,
                    count=count,
                    percentage=round_half_up(amount / total_amount * 100) if total_amount > 0 else 0,
                )
            )
        return breakdown

    def calculate_donor_stats(self, tenant_id: str, limit: int = 10, exclude_anonymous: bool = False) -> DonorStats:
        total = func.sum(Payment.amount)
        query = self.db.query(Payment.payer_email, total, func.count(Payment.id)).filter(
            Payment.tenant_id == tenant_id,
            Payment.status == PaymentStatus.COMPLETED,
            Payment.payer_email.isnot(None),
        )
        if exclude_anonymous:
            query = query.filter(Payment.is_anonymous.is_(False))

        grouped = query.group_by(Payment.payer_email).order_by(total.desc(), Payment.payer_email).all()
        top = grouped[:limit]

        names = {}
        if top:
            name_rows = (
                self.db.query(Payment.payer_email, Payment.payer_name)
                .filter(
                    Payment.tenant_id == tenant_id,
                    Payment.payer_email.in_([email for email, _, _ in top]),
                    Payment.payer_name.isnot(None),
                )
                .order_by(Payment.created_at.desc())
                .all()
            )
            for email, name in name_rows:
                names.setdefault(email, name)

        return DonorStats(
            top_donors=[
                Donor(email=email, name=names.get(email), total_amount=int(amount), count=int(count))
                for email, amount, count in top
            ],
            unique_donor_count=len(grouped),
        )

    def compare_previous(self, tenant_id: str, start_date: datetime, end_date: datetime) -> PeriodComparison:
        """
        Compare ``[start_date, end_date]`` with the window of equal length just
        before it. Changes are whole percentages; 0 when the previous window is
        empty.
        """
        current = self.calculate_payment_stats(tenant_id, start_date=start_date, end_date=end_date)
        window = previous_period(start_date, end_date)
        previous = self.calculate_payment_stats(tenant_id, start_date=window.start_date, end_date=window.end_date)
        return PeriodComparison(
            amount_change=percent_change(current.total_amount, previous.total_amount),
            count_change=percent_change(current.total_count, previous.total_count),
            previous=previous,
        )

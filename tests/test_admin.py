import csv
import io
from datetime import datetime

from alumni_payments.admin import export_payments_csv, get_payment_by_id, get_payment_stats, list_payments
from alumni_payments.models import Payment, PaymentStatus, PaymentType


def seed(db):
    rows = [
        ("p1", "t1", PaymentType.ANNUAL_FEE, 5000, PaymentStatus.COMPLETED, datetime(2026, 1, 10), False),
        ("p2", "t1", PaymentType.DONATION, 3000, PaymentStatus.COMPLETED, datetime(2026, 2, 10), True),
        ("p3", "t1", PaymentType.DONATION, 1000, PaymentStatus.PENDING, datetime(2026, 3, 10), False),
        ("p4", "t2", PaymentType.DONATION, 9000, PaymentStatus.COMPLETED, datetime(2026, 3, 10), False),
    ]
    for payment_id, tenant_id, payment_type, amount, status, created_at, anonymous in rows:
        db.add(
            Payment(
                id=payment_id,
                tenant_id=tenant_id,
                external_session_id=f"cs_{payment_id}",
                type=payment_type,
                amount=amount,
                status=status,
                created_at=created_at,
                completed_at=created_at if status == PaymentStatus.COMPLETED else None,
                payer_email=f"{payment_id}@example.com",
                payer_name=f"Payer {payment_id}",
                is_anonymous=anonymous,
                extra_metadata={},
            )
        )
    db.commit()


def test_list_payments_newest_first(db):
    seed(db)
    page = list_payments(db, "t1", page=1, limit=2)

    assert [p.id for p in page.payments] == ["p3", "p2"]
    assert page.total == 3
    assert page.total_pages == 2

    second = list_payments(db, "t1", page=2, limit=2)
    assert [p.id for p in second.payments] == ["p1"]


def test_list_payments_filters(db):
    seed(db)
    assert list_payments(db, "t1", status=PaymentStatus.COMPLETED).total == 2
    assert list_payments(db, "t1", payment_type=PaymentType.DONATION).total == 2
    assert list_payments(db, "t1", start_date=datetime(2026, 2, 1), end_date=datetime(2026, 2, 28)).total == 1


def test_get_payment_by_id_is_tenant_scoped(db):
    seed(db)
    assert get_payment_by_id(db, "t1", "p1").amount == 5000
    assert get_payment_by_id(db, "t1", "p4") is None
    assert get_payment_by_id(db, "t1", "missing") is None


def test_export_csv_hides_anonymous_payers(db):
    seed(db)
    rows = list(csv.reader(io.StringIO(export_payments_csv(db, "t1"))))

    assert rows[0] == ["ID", "Type", "Amount", "Status", "Payer name", "Email", "Created", "Completed"]
    by_id = {row[0]: row for row in rows[1:]}
    assert set(by_id) == {"p1", "p2", "p3"}
    assert by_id["p1"][1:6] == ["ANNUAL_FEE", "5000", "COMPLETED", "Payer p1", "p1@example.com"]
    assert by_id["p2"][4:6] == ["Anonymous", ""]
    assert by_id["p3"][7] == ""


def test_stats_report_by_type(db):
    seed(db)
    report = get_payment_stats(db, "t1")

    assert report["total_amount"] == 8000
    assert report["total_count"] == 2
    assert report["by_type"] == [
        {"type": "ANNUAL_FEE", "amount": 5000, "count": 1},
        {"type": "DONATION", "amount": 3000, "count": 1},
    ]
    assert "by_month" not in report
    assert "comparison" not in report


def test_stats_report_by_month_with_comparison(db):
    seed(db)
    report = get_payment_stats(
        db,
        "t1",
        start_date=datetime(2026, 2, 1),
        end_date=datetime(2026, 2, 28, 23, 59, 59),
        group_by="month",
        compare_previous=True,
    )

    assert report["total_amount"] == 3000
    assert len(report["by_month"]) == 12
    assert report["by_month"][1] == {"month": "2026-02", "amount": 3000, "count": 1}
    assert "by_type" not in report
    assert report["comparison"]["amount_change"] == -40
    assert report["comparison"]["count_change"] == 0

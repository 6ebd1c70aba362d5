import csv
import io
from datetime import date, timedelta
from decimal import Decimal

import pytest

from pharmacy.core.exceptions import ValidationError
from pharmacy.schemas.sale import SaleCreate
from pharmacy.services import report_service, sale_service
from pharmacy.utils.clock import local_today


def ring_up(db, caller, drug, quantity, **fields):
    return sale_service.process_sale(
        db, caller, SaleCreate(items=[{"drug_id": drug.id, "quantity": quantity}], **fields)
    )


# ==============================================================================
# SERVICE
# ==============================================================================

def test_period_window():
    today = date(2026, 3, 15)
    assert report_service.period_window("today", today) == (today, today)
    assert report_service.period_window("weekly", today) == (date(2026, 3, 9), today)
    assert report_service.period_window("month", today) == (date(2026, 2, 14), today)
    with pytest.raises(ValidationError):
        report_service.period_window("fortnight", today)


def test_dashboard(db, caller, make_drug, insert_drug):
    drug = make_drug(caller, quantity=12, price=Decimal("3.00"), cost_price=Decimal("2.00"))
    insert_drug(caller.tenant_id, batch_no="SOON", expiry_date=local_today() + timedelta(days=3))
    ring_up(db, caller, drug, 4)

    data = report_service.dashboard(db, caller.tenant_id)

    assert data["summary"]["today_sales_count"] == 1
    assert data["summary"]["total_sales"] == 12.0
    assert data["summary"]["today_profit"] == 4.0
    assert data["summary"]["total_drugs"] == 2
    assert data["summary"]["low_stock"] == 1  # 8 left, threshold 10
    assert data["alerts"]["low_stock"][0]["message"] == "Paracetamol 500mg stock is low (8 units remaining)"
    assert data["alerts"]["near_expiry"][0]["batch_no"] == "SOON"
    assert data["recent_sales"][0]["sale_number"] == "SL0001"


def test_inventory_overview(db, caller, make_drug):
    make_drug(caller, batch_no="A", quantity=0, price=Decimal("5.00"), cost_price=Decimal("3.00"))
    make_drug(caller, batch_no="B", quantity=20, price=Decimal("1.00"), cost_price=Decimal("0.50"))

    overview = report_service.inventory_overview(db, caller.tenant_id)["overview"]

    assert overview["total_items"] == 2
    assert overview["total_quantity"] == 20
    assert overview["total_value"] == 20.0
    assert overview["total_cost_value"] == 10.0
    assert overview["out_of_stock"] == 1
    assert overview["low_stock"] == 1


def test_analytics_folds_line_items(db, caller, make_drug):
    para = make_drug(caller, batch_no="P", price=Decimal("2.00"))
    vit = make_drug(caller, name="Vitamin C", batch_no="V", category="Supplement", price=Decimal("1.00"))
    ring_up(db, caller, para, 3, customer_name="Esi", customer_phone="0201")
    ring_up(db, caller, vit, 10, customer_name="Esi", customer_phone="0201")
    ring_up(db, caller, vit, 1)

    data = report_service.analytics(db, caller.tenant_id, "weekly")

    assert [d["drug_name"] for d in data["top_drugs"]] == ["Vitamin C", "Paracetamol 500mg"]
    assert data["categories"][0] == {"category": "Supplement", "quantity": 11, "revenue": 11.0}
    assert data["top_customers"] == [
        {
            "customer_name": "Esi",
            "customer_phone": "0201",
            "total_purchases": 2,
            "total_spent": 16.0,
            "last_purchase": data["top_customers"][0]["last_purchase"],
        }
    ]
    assert sum(h["total_sales"] for h in data["hourly_distribution"]) == 3
    assert data["summary"]["total_period_sales"] == 3
    assert data["summary"]["unique_customers"] == 1


def test_reports_are_per_pharmacy(db, caller, other_admin, make_drug):
    drug = make_drug(caller)
    ring_up(db, caller, drug, 1)

    stats = report_service.sales_statistics(db, other_admin.id, "today")
    assert stats["statistics"]["total_sales"] == 0
    assert stats["top_selling"] == []


# ==============================================================================
# HTTP
# ==============================================================================

def test_sales_report_endpoint(client, db, caller, admin_headers, make_drug):
    drug = make_drug(caller)
    ring_up(db, caller, drug, 2)

    report = client.get("/reports/sales", params={"period": "daily"}, headers=admin_headers).json()["report"]
    assert report["summary"]["total_sales"] == 1
    assert report["payment_methods"] == [{"payment_method": "cash", "count": 1, "revenue": 5.0}]


def test_stock_report_endpoint(client, caller, admin_headers, make_drug):
    make_drug(caller, quantity=3)
    report = client.get("/reports/stock", headers=admin_headers).json()["report"]
    assert report["summary"]["total_drugs"] == 1
    assert report["low_stock"][0]["quantity"] == 3


def test_cashier_cannot_read_reports(client, cashier_headers):
    assert client.get("/reports/stock", headers=cashier_headers).status_code == 403


def test_export_sales_csv(client, db, caller, admin_headers, make_drug):
    drug = make_drug(caller)
    ring_up(db, caller, drug, 2, customer_name="Kwame")

    resp = client.get("/reports/export/sales", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")

    rows = list(csv.reader(io.StringIO(resp.text)))
    assert rows[0][0] == "Sale Number"
    assert rows[1][0] == "SL0001"
    assert rows[1][3] == "Kwame"
    assert rows[1][6] == "5.00"


def test_export_inventory_csv(client, caller, admin_headers, make_drug):
    make_drug(caller, quantity=0)
    rows = list(csv.reader(io.StringIO(client.get("/reports/export/inventory", headers=admin_headers).text)))
    assert rows[1][2] == "PCM-001"
    assert rows[1][-1] == "Out of Stock"


def test_dashboard_endpoints(client, caller, admin_headers, make_drug):
    make_drug(caller)
    assert client.get("/dashboard", headers=admin_headers).json()["summary"]["total_drugs"] == 1
    assert client.get("/dashboard/inventory", headers=admin_headers).json()["overview"]["total_quantity"] == 100
    analytics = client.get("/dashboard/analytics", params={"period": "week"}, headers=admin_headers).json()
    assert len(analytics["sales_trend"]) == 7


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"

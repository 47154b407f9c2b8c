import io
from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from openpyxl import load_workbook

from feedesk.api.v1.reports import service
from feedesk.api.v1.reports.schemas import LedgerSummary

from conftest import FakeFeeService

BASE = "/api/v1/coaching/c1/fee/reports"

SUMMARY = {
    "totalCollected": 45000,
    "totalPending": 12000,
    "totalOverdue": 4500,
    "todayCollection": 1500,
    "statusBreakdown": [
        {"status": "PAID", "_count": 15, "_sum": {"finalAmount": 45000}},
        {"status": "OVERDUE", "_count": 3, "_sum": {"finalAmount": 4500}},
    ],
    "paymentModes": [
        {"mode": "RAZORPAY", "_count": 2, "_sum": {"amount": 2000}},
        {"mode": "CASH", "_count": 13, "_sum": {"amount": None}},
    ],
    "monthlyCollection": [{"month": "2025-04", "total": 30000}, {"month": "2025-05", "total": 15000}],
}


@pytest.mark.parametrize(
    "day, expected",
    [(date(2026, 3, 31), "2025-26"), (date(2026, 4, 1), "2026-27"), (date(1999, 12, 1), "1999-00")],
)
def test_financial_year_of(day, expected) -> None:
    assert service.financial_year_of(day) == expected


def test_financial_years_current_first() -> None:
    assert service.financial_years(date(2026, 10, 17)) == ["2026-27", "2025-26", "2024-25", "2023-24"]


def test_ledger_credit_is_separate_from_balance() -> None:
    summary = LedgerSummary(balance=Decimal("-250"))
    assert summary.outstanding == Decimal("0")
    assert summary.credit == Decimal("250")


@pytest.mark.asyncio
async def test_reports_are_admin_only(client: AsyncClient, student_headers) -> None:
    response = await client.get(f"{BASE}/summary", headers=student_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_summary_parses_grouped_totals(client: AsyncClient, upstream: FakeFeeService, admin_headers) -> None:
    upstream.add("GET", "/coaching/c1/fee/summary", SUMMARY)

    response = await client.get(f"{BASE}/summary", params={"fy": "2025-26"}, headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["financialYear"] == "2025-26"
    assert data["overdueCount"] == 3
    assert data["statusBreakdown"][1]["count"] == 3
    assert [m["mode"] for m in data["paymentModes"]] == ["ONLINE", "CASH"]
    assert Decimal(data["paymentModes"][1]["total"]) == Decimal("0")
    assert upstream.requests[0].url.params["fy"] == "2025-26"


@pytest.mark.asyncio
async def test_summary_rejects_bad_financial_year(client: AsyncClient, upstream: FakeFeeService, admin_headers) -> None:
    response = await client.get(f"{BASE}/summary", params={"fy": "2025-27"}, headers=admin_headers)

    assert response.status_code == 422
    assert response.json()["detail"] == "Financial year must look like 2025-26"
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_financial_years_route(client: AsyncClient, admin_headers) -> None:
    response = await client.get(f"{BASE}/financial-years", headers=admin_headers)
    data = response.json()
    assert len(data) == 4
    assert data[0] == service.financial_year_of(date.today())


@pytest.mark.asyncio
async def test_overdue_report_sorted_by_days(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    upstream.add(
        "GET",
        "/coaching/c1/fee/overdue-report",
        [
            make_record(id="recent", dueDate="2024-01-01", status="OVERDUE"),
            make_record(id="oldest", dueDate="2020-01-01", status="OVERDUE", paidAmount=300),
            make_record(id="settled", dueDate="2019-01-01", status="PAID", paidAmount=1000),
        ],
    )

    response = await client.get(f"{BASE}/overdue", headers=admin_headers)

    data = response.json()
    assert [i["record"]["id"] for i in data["records"]] == ["oldest", "recent"]
    assert data["count"] == 2
    assert Decimal(data["total"]) == Decimal("1700")


@pytest.mark.asyncio
async def test_student_ledger_timeline(client: AsyncClient, upstream: FakeFeeService, admin_headers) -> None:
    upstream.add(
        "GET",
        "/coaching/c1/fee/members/m1/ledger",
        {
            "member": {"id": "m1", "name": "Ravi Kumar"},
            "summary": {"totalCharged": 2000, "totalPaid": 1500, "totalRefunded": 0, "balance": 500},
            "timeline": [
                {"type": "RECORD", "label": "April tuition", "amount": 1000, "date": "2025-04-01T00:00:00Z", "runningBalance": 1000},
                {"type": "PAYMENT", "label": "Payment", "amount": 1000, "date": "2025-04-05T00:00:00Z", "mode": "razorpay", "ref": "RCPT-1", "runningBalance": 0},
            ],
        },
    )

    response = await client.get(f"{BASE}/members/m1/ledger", headers=admin_headers)

    data = response.json()
    assert [e["kind"] for e in data["timeline"]] == ["CHARGE", "PAYMENT"]
    assert data["timeline"][0]["title"] == "April tuition"
    assert data["timeline"][1]["mode"] == "ONLINE"
    assert data["timeline"][1]["receiptNo"] == "RCPT-1"
    assert Decimal(data["summary"]["balance"]) == Decimal("500")


@pytest.mark.asyncio
async def test_calendar(client: AsyncClient, upstream: FakeFeeService, admin_headers) -> None:
    upstream.add(
        "GET",
        "/coaching/c1/fee/calendar",
        [
            {"date": "2025-04-12T00:00:00.000Z", "collected": 2500, "due": 0, "paidCount": 2},
            {"date": "2025-04-03", "collected": 0, "due": 1000, "dueCount": 1},
            {"date": "2025-04-05", "collected": 0, "due": 0},
        ],
    )

    response = await client.get(f"{BASE}/calendar", params={"from": "2025-04-01", "to": "2025-04-30"}, headers=admin_headers)

    data = response.json()
    assert [d["date"] for d in data] == ["2025-04-03", "2025-04-12"]
    assert Decimal(data[1]["paidTotal"]) == Decimal("2500")
    assert data[0]["dueCount"] == 1
    sent = upstream.requests[0].url.params
    assert (sent["from"], sent["to"]) == ("2025-04-01", "2025-04-30")


@pytest.mark.parametrize("start, end", [("2025-04-30", "2025-04-01"), ("2024-01-01", "2025-06-01")])
@pytest.mark.asyncio
async def test_calendar_range_checks(client: AsyncClient, upstream: FakeFeeService, admin_headers, start, end) -> None:
    response = await client.get(f"{BASE}/calendar", params={"from": start, "to": end}, headers=admin_headers)
    assert response.status_code == 400
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_export_workbook(client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record) -> None:
    pages = {
        "1": {"total": 3, "page": 1, "limit": 2, "records": [make_record(id="r1"), make_record(id="r2", paidAmount=1000, status="PAID")]},
        "2": {"total": 3, "page": 2, "limit": 2, "records": [make_record(id="r3", title="May tuition")]},
    }
    upstream.add("GET", "/coaching/c1/fee/records", lambda request: pages[request.url.params["page"]])
    upstream.add("GET", "/coaching/c1/fee/summary", SUMMARY)

    response = await client.get(f"{BASE}/export.xlsx", params={"fy": "2025-26"}, headers=admin_headers)

    assert response.status_code == 200
    assert response.headers["content-disposition"] == "attachment; filename=fee_records_c1.xlsx"
    wb = load_workbook(io.BytesIO(response.content))
    records = list(wb["Records"].iter_rows(values_only=True))
    assert records[0] == tuple(service.RECORD_HEADERS)
    assert [row[0] for row in records[1:]] == ["April tuition", "April tuition", "May tuition"]
    assert records[2][3] == "PAID"
    assert records[1][1] == "Ravi Kumar"

    summary = list(wb["Summary"].iter_rows(values_only=True))
    assert summary[0] == ("Financial year", "2025-26", None)
    assert ("Online", 2, 2000) in summary
    assert len(upstream.calls("GET", "/coaching/c1/fee/records")) == 2


def test_workbook_without_summary(make_record) -> None:
    from feedesk.api.v1.fees.schemas import FeeRecord

    content = service.build_records_workbook([FeeRecord.model_validate(make_record())])
    wb = load_workbook(io.BytesIO(content))
    assert wb.sheetnames == ["Records"]
    assert wb["Records"].max_row == 2

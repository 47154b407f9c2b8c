from datetime import date
from decimal import Decimal

import httpx
import pytest
from httpx import AsyncClient

from conftest import FakeFeeService, make_token

RECORD_PATH = "/coaching/c1/fee/records/r1"


def _stateful_record(upstream: FakeFeeService, record: dict) -> dict:
    """Serve one record that the pay/refund/waive routes mutate."""
    state = {"record": record}
    upstream.add("GET", RECORD_PATH, lambda request: state["record"])
    return state


@pytest.mark.asyncio
async def test_requires_token(client: AsyncClient) -> None:
    response = await client.get("/api/v1/coaching/c1/fee/records")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_student_cannot_list_records(client: AsyncClient, student_headers) -> None:
    response = await client.get("/api/v1/coaching/c1/fee/records", headers=student_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_other_coaching_is_forbidden(client: AsyncClient, admin_headers) -> None:
    response = await client.get("/api/v1/coaching/c2/fee/records/r1", headers=admin_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_records_with_totals(client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record) -> None:
    upstream.add(
        "GET",
        "/coaching/c1/fee/records",
        {
            "total": 1,
            "page": 1,
            "limit": 30,
            "records": [
                make_record(taxType="GST_EXCLUSIVE", gstRate=18, taxAmount=180, finalAmount=1180, paidAmount=200)
            ],
        },
    )

    response = await client.get(
        "/api/v1/coaching/c1/fee/records",
        params={"status": "PARTIALLY_PAID", "search": "  ravi "},
        headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["hasMore"] is False
    assert data["stale"] is False
    totals = data["records"][0]["totals"]
    assert Decimal(totals["finalAmount"]) == Decimal("1180")
    assert Decimal(totals["balance"]) == Decimal("980")
    assert totals["status"] == "PARTIALLY_PAID"
    sent = upstream.calls("GET", "/coaching/c1/fee/records")[0].url.params
    assert sent["status"] == "PARTIALLY_PAID"
    assert sent["search"] == "ravi"
    assert sent["limit"] == "30"


@pytest.mark.asyncio
async def test_record_view_for_student(
    client: AsyncClient, upstream: FakeFeeService, student_headers, make_record, gateway_enabled
) -> None:
    structure = {
        "id": "s1",
        "name": "Tuition",
        "amount": 1000,
        "allowInstallments": True,
        "installmentCount": 3,
    }
    upstream.add("GET", RECORD_PATH, make_record(assignment={"feeStructure": structure}))

    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=student_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["record"]["feeStructure"]["id"] == "s1"
    assert [Decimal(i["amount"]) for i in data["installments"]] == [
        Decimal("333.34"),
        Decimal("333.34"),
        Decimal("333.32"),
    ]
    assert Decimal(data["nextInstallmentAmount"]) == Decimal("333.34")
    assert data["actions"]["canPayOnline"] is True
    assert data["actions"]["canRefund"] is False
    assert data["actions"]["canCollect"] is False
    assert data["actions"]["canWaive"] is False
    assert data["actions"]["canRemind"] is False
    assert data["actions"]["canPayInstallment"] is False


@pytest.mark.asyncio
async def test_online_option_hidden_when_config_unreadable(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    upstream.add("GET", RECORD_PATH, make_record())
    upstream.add("GET", "/payment/config", {"message": "boom"}, status_code=500)

    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["actions"]["canPayOnline"] is False


@pytest.mark.asyncio
async def test_record_payment_refetches_record(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record, gateway_enabled
) -> None:
    state = _stateful_record(upstream, make_record(baseAmount=1000, discountAmount=100, fineAmount=50, finalAmount=950))

    def pay(request: httpx.Request) -> dict:
        state["record"] = {**state["record"], "paidAmount": 950, "status": "PAID"}
        return {"id": "r1"}

    upstream.add("POST", f"{RECORD_PATH}/pay", pay)

    response = await client.post(
        "/api/v1/coaching/c1/fee/records/r1/pay",
        json={"amount": 950, "mode": "UPI", "transactionRef": " UTR1 "},
        headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["totals"]["balance"]) == Decimal("0")
    assert data["totals"]["isPaid"] is True
    assert data["actions"]["canCollect"] is False
    assert upstream.last_json("POST", f"{RECORD_PATH}/pay") == {"amount": 950.0, "mode": "UPI", "transactionRef": "UTR1"}
    assert len(upstream.calls("GET", RECORD_PATH)) == 2


@pytest.mark.asyncio
async def test_payment_over_balance_is_rejected(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    upstream.add("GET", RECORD_PATH, make_record(finalAmount=950, baseAmount=950))

    response = await client.post(
        "/api/v1/coaching/c1/fee/records/r1/pay", json={"amount": 1000}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Amount exceeds balance of ₹950"
    assert upstream.calls("POST", f"{RECORD_PATH}/pay") == []


@pytest.mark.asyncio
async def test_payment_on_settled_record_is_rejected(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    upstream.add("GET", RECORD_PATH, make_record(paidAmount=1000, status="PAID"))

    response = await client.post("/api/v1/coaching/c1/fee/records/r1/pay", json={"amount": 10}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "This record is already settled"


@pytest.mark.asyncio
async def test_online_mode_cannot_be_recorded_manually(client: AsyncClient, admin_headers) -> None:
    response = await client.post(
        "/api/v1/coaching/c1/fee/records/r1/pay", json={"amount": 10, "mode": "ONLINE"}, headers=admin_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_upstream_message_is_shown_without_prefix(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    upstream.add("GET", RECORD_PATH, make_record())
    upstream.add("POST", f"{RECORD_PATH}/pay", {"message": "Exception: Record is locked"}, status_code=409)

    response = await client.post("/api/v1/coaching/c1/fee/records/r1/pay", json={"amount": 10}, headers=admin_headers)

    assert response.status_code == 409
    assert response.json()["detail"] == "Record is locked"


@pytest.mark.asyncio
async def test_pay_next_fixed_installment(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record, gateway_enabled
) -> None:
    structure = {
        "id": "s1",
        "name": "Tuition",
        "amount": 2000,
        "allowInstallments": True,
        "installmentAmounts": [
            {"label": "Term 1", "amount": 500},
            {"label": "Term 2", "amount": 500},
            {"label": "Term 3", "amount": 1000},
        ],
    }
    upstream.add(
        "GET", RECORD_PATH, make_record(baseAmount=2000, finalAmount=2000, paidAmount=500, feeStructure=structure)
    )
    upstream.add("POST", f"{RECORD_PATH}/pay", {"id": "r1"})

    response = await client.post(
        "/api/v1/coaching/c1/fee/records/r1/pay-installment", json={"mode": "CASH"}, headers=admin_headers
    )

    assert response.status_code == 200
    assert upstream.last_json("POST", f"{RECORD_PATH}/pay")["amount"] == 500.0


@pytest.mark.asyncio
async def test_pay_installment_without_plan(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    upstream.add("GET", RECORD_PATH, make_record())

    response = await client.post("/api/v1/coaching/c1/fee/records/r1/pay-installment", json={}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json()["detail"] == "This fee has no installment plan"


@pytest.mark.asyncio
async def test_refund_rules(client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record) -> None:
    state = _stateful_record(upstream, make_record())

    response = await client.post("/api/v1/coaching/c1/fee/records/r1/refund", json={"amount": 10}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Nothing has been paid on this record"

    state["record"] = make_record(paidAmount=400, status="PARTIALLY_PAID")
    response = await client.post("/api/v1/coaching/c1/fee/records/r1/refund", json={"amount": 500}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Refund exceeds amount paid of ₹400"
    assert upstream.calls("POST", f"{RECORD_PATH}/refund") == []


@pytest.mark.asyncio
async def test_refund_is_forwarded(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record, gateway_enabled
) -> None:
    upstream.add("GET", RECORD_PATH, make_record(paidAmount=400, status="PARTIALLY_PAID"))
    upstream.add("POST", f"{RECORD_PATH}/refund", {"id": "f1"})

    response = await client.post(
        "/api/v1/coaching/c1/fee/records/r1/refund",
        json={"amount": 150, "reason": " Left batch ", "mode": "CASH"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert upstream.last_json("POST", f"{RECORD_PATH}/refund") == {"amount": 150.0, "reason": "Left batch", "mode": "CASH"}


@pytest.mark.asyncio
async def test_waive(client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record, gateway_enabled) -> None:
    state = _stateful_record(upstream, make_record(status="OVERDUE", dueDate="2020-01-01"))

    def waive(request: httpx.Request) -> dict:
        state["record"] = {**state["record"], "status": "WAIVED"}
        return {"id": "r1", "status": "WAIVED"}

    upstream.add("POST", f"{RECORD_PATH}/waive", waive)

    response = await client.post("/api/v1/coaching/c1/fee/records/r1/waive", json={"notes": "Hardship"}, headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["totals"]["status"] == "WAIVED"
    assert data["totals"]["daysOverdue"] == 0

    response = await client.post("/api/v1/coaching/c1/fee/records/r1/waive", json={}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "This fee is already waived"


@pytest.mark.asyncio
async def test_remind(client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record) -> None:
    upstream.add("GET", RECORD_PATH, make_record())
    upstream.add("POST", f"{RECORD_PATH}/remind", {"ok": True})

    response = await client.post("/api/v1/coaching/c1/fee/records/r1/remind", headers=admin_headers)

    assert response.status_code == 204
    assert len(upstream.calls("POST", f"{RECORD_PATH}/remind")) == 1


@pytest.mark.asyncio
async def test_bulk_remind_only_for_unpaid(client: AsyncClient, upstream: FakeFeeService, admin_headers) -> None:
    upstream.add("POST", "/coaching/c1/fee/bulk-remind", {"sent": 4})

    response = await client.post(
        "/api/v1/coaching/c1/fee/bulk-remind", json={"statusFilter": "PAID"}, headers=admin_headers
    )
    assert response.status_code == 400

    response = await client.post(
        "/api/v1/coaching/c1/fee/bulk-remind", json={"memberIds": ["m1", "m2"]}, headers=admin_headers
    )
    assert response.status_code == 200
    assert response.json() == {"sent": 4}
    assert upstream.last_json("POST", "/coaching/c1/fee/bulk-remind") == {
        "statusFilter": "OVERDUE",
        "memberIds": ["m1", "m2"],
    }


@pytest.mark.asyncio
async def test_payment_receipt_as_text(
    client: AsyncClient, upstream: FakeFeeService, student_headers, make_record
) -> None:
    upstream.add(
        "GET",
        RECORD_PATH,
        make_record(
            paidAmount=1000,
            status="PAID",
            payments=[{"id": "p1", "amount": 1000, "mode": "CASH", "receiptNo": "R-7", "paidAt": "2025-04-05T10:00:00"}],
        ),
    )

    response = await client.get("/api/v1/coaching/c1/fee/records/r1/payments/p1/receipt", headers=student_headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text.startswith("Payment Receipt — Bright Minds Academy")
    assert "Receipt: R-7" in response.text

    response = await client.get("/api/v1/coaching/c1/fee/records/r1/payments/p9/receipt", headers=student_headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "Payment not found"


@pytest.mark.asyncio
async def test_my_fees_summary(client: AsyncClient, upstream: FakeFeeService, student_headers, make_record) -> None:
    upstream.add(
        "GET",
        "/coaching/c1/fee/my",
        {
            "records": [
                make_record(id="r1", paidAmount=200, status="PARTIALLY_PAID"),
                make_record(id="r2", dueDate="2020-01-01", status="OVERDUE"),
                make_record(id="r3", paidAmount=1000, status="PAID"),
            ]
        },
    )

    response = await client.get("/api/v1/coaching/c1/fee/my", headers=student_headers)

    assert response.status_code == 200
    summary = response.json()["summary"]
    assert Decimal(str(summary["totalDue"])) == Decimal("1800")
    assert Decimal(str(summary["totalPaid"])) == Decimal("1200")
    assert summary["overdueCount"] == 1
    assert summary["openCount"] == 2


@pytest.mark.asyncio
async def test_assignment_routes(client: AsyncClient, upstream: FakeFeeService, admin_headers) -> None:
    upstream.add("POST", "/coaching/c1/fee/assign", {"id": "a1"})
    upstream.add("PATCH", "/coaching/c1/fee/assignments/a1/pause", {"id": "a1", "isPaused": True})
    upstream.add("DELETE", "/coaching/c1/fee/assignments/a1", {"success": True})

    response = await client.post(
        "/api/v1/coaching/c1/fee/assign",
        json={"memberId": "m1", "feeStructureId": "s1", "discountAmount": 100},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert upstream.last_json("POST", "/coaching/c1/fee/assign") == {
        "memberId": "m1",
        "feeStructureId": "s1",
        "discountAmount": 100.0,
    }

    response = await client.patch(
        "/api/v1/coaching/c1/fee/assignments/a1/pause", json={"pause": True}, headers=admin_headers
    )
    assert response.json()["isPaused"] is True

    response = await client.delete("/api/v1/coaching/c1/fee/assignments/a1", headers=admin_headers)
    assert response.status_code == 204


@pytest.mark.asyncio
async def test_assignment_dates_are_checked(client: AsyncClient, admin_headers) -> None:
    response = await client.post(
        "/api/v1/coaching/c1/fee/assign",
        json={"memberId": "m1", "feeStructureId": "s1", "startDate": "2025-05-01", "endDate": "2025-04-01"},
        headers=admin_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stale_copy_served_when_fee_service_is_down(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record, gateway_enabled
) -> None:
    await client.put("/api/v1/coaching/c1/cache", json={"enabled": True}, headers=admin_headers)
    upstream.add("GET", RECORD_PATH, make_record())

    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)
    assert response.json()["stale"] is False
    assert response.json()["actions"]["canPayOnline"] is True

    def down(request: httpx.Request) -> dict:
        raise httpx.ConnectError("Connection refused", request=request)

    upstream.add("GET", RECORD_PATH, down)
    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["stale"] is True
    assert data["actions"]["canPayOnline"] is False


@pytest.mark.asyncio
async def test_unreachable_without_cache_is_503(client: AsyncClient, upstream: FakeFeeService, admin_headers) -> None:
    def down(request: httpx.Request) -> dict:
        raise httpx.ConnectError("Connection refused", request=request)

    upstream.add("GET", RECORD_PATH, down)
    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)

    assert response.status_code == 503
    assert response.json()["detail"] == "You appear to be offline. Check your connection and try again."


@pytest.mark.asyncio
async def test_record_view_actions_for_admin(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record, gateway_enabled
) -> None:
    structure = {"id": "s1", "name": "Tuition", "amount": 1000, "lateFinePerDay": 10}
    upstream.add(
        "GET",
        RECORD_PATH,
        make_record(dueDate="2020-01-01T00:00:00.000Z", status="OVERDUE", paidAmount=200, feeStructure=structure),
    )

    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)

    data = response.json()
    actions = data["actions"]
    assert actions["canCollect"] and actions["canWaive"] and actions["canRemind"] and actions["canRefund"]
    assert actions["canPayInstallment"] is False
    days = (date.today() - date(2020, 1, 1)).days
    assert data["totals"]["daysOverdue"] == days
    assert Decimal(data["lateFinePreview"]) == Decimal(10 * days)


@pytest.mark.asyncio
async def test_installments_hidden_when_structure_disallows_them(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    structure = {"id": "s1", "name": "Tuition", "amount": 1000, "allowInstallments": False, "installmentCount": 3}
    upstream.add("GET", RECORD_PATH, make_record(assignment={"feeStructure": structure}))

    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)

    data = response.json()
    assert data["installments"] == []
    assert data["nextInstallmentAmount"] is None
    assert data["actions"]["canPayInstallment"] is False


@pytest.mark.asyncio
async def test_paid_amount_falls_back_to_payment_history(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    record = make_record(
        payments=[{"id": "p1", "amount": 400, "mode": "CASH", "paidAt": "2025-04-01T10:00:00"}],
        refunds=[{"id": "f1", "amount": 100, "refundedAt": "2025-04-02T10:00:00"}],
    )
    del record["paidAmount"]
    upstream.add("GET", RECORD_PATH, record)

    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)

    totals = response.json()["totals"]
    assert Decimal(totals["paidAmount"]) == Decimal("300")
    assert Decimal(totals["balance"]) == Decimal("700")


@pytest.mark.asyncio
async def test_stale_record_is_never_shared_with_other_members(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, make_record
) -> None:
    await client.put("/api/v1/coaching/c1/cache", json={"enabled": True}, headers=admin_headers)
    upstream.add("GET", RECORD_PATH, make_record(memberId="m-other", title="Secret record"))
    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)
    assert response.json()["record"]["title"] == "Secret record"

    def down(request: httpx.Request) -> dict:
        raise httpx.ConnectError("Connection refused", request=request)

    upstream.add("GET", RECORD_PATH, down)
    other = {"Authorization": f"Bearer {make_token('u3', {'c1': 'STUDENT'})}"}
    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=other)

    assert response.status_code == 503

    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=admin_headers)
    assert response.json()["stale"] is True


@pytest.mark.asyncio
async def test_member_gets_own_stale_copy(
    client: AsyncClient, upstream: FakeFeeService, admin_headers, student_headers, make_record
) -> None:
    await client.put("/api/v1/coaching/c1/cache", json={"enabled": True}, headers=admin_headers)
    upstream.add("GET", RECORD_PATH, make_record())
    await client.get("/api/v1/coaching/c1/fee/records/r1", headers=student_headers)

    def down(request: httpx.Request) -> dict:
        raise httpx.ConnectError("Connection refused", request=request)

    upstream.add("GET", RECORD_PATH, down)
    response = await client.get("/api/v1/coaching/c1/fee/records/r1", headers=student_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["stale"] is True
    assert data["actions"]["canWaive"] is False

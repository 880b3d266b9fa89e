from datetime import datetime
from decimal import Decimal
from io import BytesIO

import pandas as pd

from affiliate_desk.models import Commission, Payment, Payout

IN_WEEK = datetime(2025, 1, 8, 10, 30)
WEEK = {"week_start": "2025-01-06", "week_end": "2025-01-12"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_admin_routes_require_an_admin(client, seed):
    affiliate = seed.affiliate()

    assert client.get("/admin/payouts/processing", headers={"X-User-Id": ""}).status_code == 401
    assert client.get("/admin/payouts/processing", headers={"X-User-Id": "abc"}).status_code == 401
    assert client.get("/admin/payouts/processing", headers={"X-User-Id": "99999"}).status_code == 401
    resp = client.get("/admin/payouts/processing", headers={"X-User-Id": str(affiliate.id)})
    assert resp.status_code == 403
    assert client.get("/admin/payouts/processing").status_code == 200


def test_order_then_webhook_then_replay(client, seed, db_session, notifier):
    sponsor = seed.affiliate()
    bundle = seed.bundle(price="3000", commission_percent="15")
    buyer = seed.user(sponsor=sponsor)

    resp = client.post(
        "/payments/orders",
        json={"user_id": buyer.id, "course_id": bundle.id, "order_id": " order_77 ", "amount": "3000"},
        headers={"X-User-Id": str(buyer.id)},
    )
    assert resp.status_code == 201
    assert resp.json()["gateway_order_id"] == "order_77"

    event = {"paymentId": "pay_77", "orderId": "order_77", "status": "captured", "method": "card"}
    first = client.post("/payments/webhook", json=event)
    assert first.status_code == 200
    assert first.json()["outcome"] == "processed"
    assert Decimal(first.json()["commission_amount"]) == Decimal("450")

    second = client.post("/payments/webhook", json=event)
    assert second.json()["outcome"] == "already_processed"
    assert db_session.query(Commission).count() == 1
    assert notifier.kinds() == ["commission_earned"]


def test_orders_for_someone_else_are_forbidden(client, seed):
    bundle = seed.bundle()
    buyer = seed.user()
    other = seed.user()
    resp = client.post(
        "/payments/orders",
        json={"user_id": other.id, "course_id": bundle.id, "order_id": "o1", "amount": "10"},
        headers={"X-User-Id": str(buyer.id)},
    )
    assert resp.status_code == 403


def test_webhook_for_unknown_order_is_404(client):
    resp = client.post("/payments/webhook", json={"paymentId": "p", "orderId": "missing", "status": "captured"})
    assert resp.status_code == 404
    assert "missing" in resp.json()["detail"]


def test_webhook_rejects_unknown_status(client):
    resp = client.post("/payments/webhook", json={"paymentId": "p", "orderId": "o", "status": "weird"})
    assert resp.status_code == 422


def test_refund_route(client, seed, db_session):
    buyer = seed.user()
    bundle = seed.bundle()
    payment = seed.payment(buyer, bundle, status="captured", gateway_payment_id="pay_r")

    resp = client.post(f"/payments/{payment.id}/refund")
    assert resp.status_code == 200
    assert resp.json()["status"] == "refunded"
    assert client.post(f"/payments/{payment.id}/refund").status_code == 409
    assert db_session.get(Payment, payment.id).status == "refunded"

    listing = client.get("/payments", params={"status": "refunded"})
    assert [p["id"] for p in listing.json()] == [payment.id]


def test_generate_download_and_reconcile(client, seed, db_session, export_dir, notifier):
    affiliate = seed.affiliate(email="flow@example.com")
    blocked = seed.affiliate(kyc_status="pending")
    seed.commission(affiliate, amount="1000", created_at=IN_WEEK)
    seed.commission(blocked, amount="1000", created_at=IN_WEEK)

    eligible = client.get("/admin/payouts/eligible", params=WEEK)
    assert [row["id"] for row in eligible.json()] == [affiliate.id]

    resp = client.post("/admin/payouts/generate", json={"user_ids": [affiliate.id, blocked.id], **WEEK})
    assert resp.status_code == 200
    body = resp.json()
    assert body["outcome"] == "generated"
    assert body["created"] == 1
    assert body["skipped"] == 1

    files = client.get("/admin/payouts/files").json()
    assert files[0]["file_name"] == body["file_name"]
    download = client.get(files[0]["url"])
    assert download.status_code == 200
    assert "Beneficiary Account Number" in download.text

    processing = client.get("/admin/payouts/processing").json()
    assert len(processing) == 1
    assert processing[0]["net_amount"] == "980.00"

    response_frame = pd.DataFrame(
        [
            {
                "Beneficiary Email ID": "flow@example.com",
                "Amount": "980.00",
                "Transaction Type": "NEFT",
                "Transaction Date": "",
                "UTR Number": "UTR9",
                "Status": "Success",
                "Errors": "",
            }
        ]
    )
    upload = client.post(
        "/admin/payouts/bank-response",
        files={"file": ("response.csv", response_frame.to_csv(index=False).encode(), "text/csv")},
    )
    assert upload.status_code == 200
    assert upload.json()["paid"] == 1
    assert notifier.kinds() == ["payout_succeeded"]

    completed = client.get("/admin/payouts/completed").json()
    assert completed[0]["utr_number"] == "UTR9"
    assert db_session.query(Payout).one().status == "paid"


def test_generate_with_nothing_pending_is_a_no_op(client, seed, export_dir):
    affiliate = seed.affiliate()
    resp = client.post("/admin/payouts/generate", json={"user_ids": [affiliate.id], **WEEK})
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "no_op"
    assert list(export_dir.iterdir()) == []


def test_generate_validates_payload(client):
    resp = client.post(
        "/admin/payouts/generate",
        json={"user_ids": [1], "week_start": "2025-01-12", "week_end": "2025-01-06"},
    )
    assert resp.status_code == 422
    assert client.post("/admin/payouts/generate", json={"user_ids": [], **WEEK}).status_code == 422


def test_download_missing_week_is_404(client):
    assert client.get("/admin/payouts/files/download", params=WEEK).status_code == 404


def test_bank_response_rejects_unsupported_upload(client):
    resp = client.post("/admin/payouts/bank-response", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert resp.status_code == 400


def test_bank_response_accepts_xlsx(client, seed):
    frame = pd.DataFrame([{"Beneficiary Email ID": "nobody@example.com", "Amount": "10", "Status": "Success"}])
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, index=False)
    resp = client.post(
        "/admin/payouts/bank-response",
        files={"file": ("bank.xlsx", buffer.getvalue(), "application/octet-stream")},
    )
    assert resp.status_code == 200
    assert resp.json()["skipped"] == 1


def test_failed_listing(client, seed, db_session):
    affiliate = seed.affiliate(name="Failing Affiliate")
    payout = Payout(
        user_id=affiliate.id,
        total_amount=Decimal("100"),
        net_amount=Decimal("98"),
        tds_amount=Decimal("2"),
        beneficiary_name="Failing Affiliate",
        account_number="001234567890",
        ifsc_code="HDFC0001234",
        status="failed",
        failure_reason="Account closed",
        from_date=datetime(2025, 1, 6).date(),
        to_date=datetime(2025, 1, 12).date(),
    )
    db_session.add(payout)
    db_session.commit()

    rows = client.get("/admin/payouts/failed").json()
    assert rows[0]["full_name"] == "Failing Affiliate"
    assert rows[0]["reason"] == "Account closed"
    assert rows[0]["transaction_date"] == "-"


def test_affiliate_views(client, seed):
    affiliate = seed.affiliate()
    other = seed.affiliate()
    seed.commission(affiliate, amount="100")
    seed.commission(affiliate, amount="50", status="paid")

    own = client.get(f"/affiliates/{affiliate.id}/commissions", headers={"X-User-Id": str(affiliate.id)})
    assert own.status_code == 200
    assert len(own.json()) == 2
    paid = client.get(f"/affiliates/{affiliate.id}/commissions", params={"status": "paid"})
    assert len(paid.json()) == 1

    forbidden = client.get(f"/affiliates/{affiliate.id}/earnings", headers={"X-User-Id": str(other.id)})
    assert forbidden.status_code == 403

    earnings = client.get(f"/affiliates/{affiliate.id}/earnings").json()
    assert earnings["level"] == "Starter"
    assert Decimal(earnings["commission_totals"]["pending"]) == Decimal("100")


def test_rebuild_route_restores_a_missing_instruction_file(client, seed, export_dir):
    affiliate = seed.affiliate(email="rebuild@example.com")
    seed.commission(affiliate, amount="1000", created_at=IN_WEEK)
    generated = client.post("/admin/payouts/generate", json={"user_ids": [affiliate.id], **WEEK}).json()
    (export_dir / generated["file_name"]).unlink()

    resp = client.post("/admin/payouts/files/rebuild", params=WEEK)

    assert resp.status_code == 200
    download = client.get(resp.json()["url"])
    assert download.status_code == 200
    assert "rebuild@example.com" in download.text
    missing = client.post(
        "/admin/payouts/files/rebuild", params={"week_start": "2025-02-03", "week_end": "2025-02-09"}
    )
    assert missing.status_code == 404


def test_tds_routes(client, seed, db_session):
    affiliate = seed.affiliate(name="Tax Payer")
    db_session.add(
        Payout(
            user_id=affiliate.id,
            total_amount=Decimal("1000"),
            tds_amount=Decimal("20"),
            net_amount=Decimal("980"),
            beneficiary_name="Tax Payer",
            account_number="001234567890",
            ifsc_code="HDFC0001234",
            status="paid",
            transaction_date=datetime(2025, 1, 13, 11, 0),
            from_date=datetime(2025, 1, 6).date(),
            to_date=datetime(2025, 1, 12).date(),
        )
    )
    db_session.commit()

    preview = client.get("/admin/tds/report", params={"month": "2025-01"})
    assert preview.status_code == 200
    assert preview.json()[0]["name"] == "Tax Payer"
    assert Decimal(preview.json()[0]["total_tds"]) == Decimal("20")
    assert client.get("/admin/tds/report", params={"month": "2025-1"}).status_code == 400

    assert client.post("/admin/tds/generate", json={"month": "01-2025"}).status_code == 422
    assert client.post("/admin/tds/generate", json={"month": "2025-02"}).status_code == 404
    generated = client.post("/admin/tds/generate", json={"month": "2025-01"})
    assert generated.status_code == 200
    assert generated.json()["file_name"] == "TDS-2025-01.csv"

    files = client.get("/admin/tds/files").json()
    assert [f["month"] for f in files] == ["2025-01"]
    download = client.get(files[0]["url"])
    assert download.status_code == 200
    assert "Tax Payer" in download.text
    assert client.get("/admin/tds/files/TDS-2024-12.csv").status_code == 404

    affiliate_headers = {"X-User-Id": str(affiliate.id)}
    assert client.get("/admin/tds/files", headers=affiliate_headers).status_code == 403

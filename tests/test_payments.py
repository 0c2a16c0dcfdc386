"""
tests/test_payments.py
Tests for Razorpay order creation and checkout signature verification.
"""

import hashlib
import hmac
import uuid
from unittest.mock import patch

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.models.models import BookingStatus, PaymentMethod, PaymentStatus, Profile
from shared.utils.security import sign_razorpay_payment, verify_razorpay_signature
from tests.conftest import auth_headers, make_booking


# ── Signature ─────────────────────────────────────────────────

def test_signature_is_hmac_of_order_and_payment():
    """The checkout signature is HMAC-SHA256 of order and payment ids."""
    expected = hmac.new(
        b"rzp_test_secret", b"order_abc|pay_xyz", hashlib.sha256
    ).hexdigest()
    assert sign_razorpay_payment("order_abc", "pay_xyz") == expected
    assert verify_razorpay_signature("order_abc", "pay_xyz", expected)
    assert not verify_razorpay_signature("order_abc", "pay_other", expected)
    assert not verify_razorpay_signature("order_abc", "pay_xyz", "0" * 64)


# ── Create Order ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_order_requires_auth(client: AsyncClient):
    """create-order needs a token."""
    response = await client.post("/payments/create-order", json={"amount": 500})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_order_for_booking_uses_booking_total(
    client: AsyncClient, db: AsyncSession, user: Profile
):
    """A booking's order is for its total in paise, not the client amount."""
    booking = await make_booking(db, user, total_amount=1349)
    mock_order = {"id": "order_test_123", "amount": 134900, "currency": "INR"}

    with patch("services.payment.router.razorpay.Client") as mock_rzp:
        mock_rzp.return_value.order.create.return_value = mock_order
        response = await client.post(
            "/payments/create-order",
            headers=auth_headers(user),
            json={"amount": 1, "bookingId": str(booking.id)},
        )

    assert response.status_code == 200
    assert response.json() == {"orderId": "order_test_123", "amount": 134900, "currency": "INR"}

    sent = mock_rzp.return_value.order.create.call_args.args[0]
    assert sent["amount"] == 134900
    assert sent["currency"] == "INR"
    assert len(sent["receipt"]) <= 40

    await db.refresh(booking)
    assert booking.razorpay_order_id == "order_test_123"


@pytest.mark.asyncio
async def test_create_order_without_booking_uses_client_amount(client: AsyncClient, user: Profile):
    """Top-up orders use the client amount."""
    with patch("services.payment.router.razorpay.Client") as mock_rzp:
        mock_rzp.return_value.order.create.return_value = {
            "id": "order_topup", "amount": 50000, "currency": "INR",
        }
        response = await client.post(
            "/payments/create-order", headers=auth_headers(user), json={"amount": 500}
        )

    assert response.status_code == 200
    assert mock_rzp.return_value.order.create.call_args.args[0]["amount"] == 50000


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"amount": 0}, {"amount": -10}])
async def test_create_order_invalid_amount(client: AsyncClient, user: Profile, body: dict):
    """Missing or non-positive amounts are refused."""
    response = await client.post("/payments/create-order", headers=auth_headers(user), json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid amount"


@pytest.mark.asyncio
async def test_create_order_refuses_paid_or_cancelled_booking(
    client: AsyncClient, db: AsyncSession, user: Profile
):
    """Paid and cancelled bookings cannot open an order."""
    paid = await make_booking(db, user, payment_status=PaymentStatus.PAID)
    cancelled = await make_booking(db, user, status=BookingStatus.CANCELLED)
    headers = auth_headers(user)

    response = await client.post(
        "/payments/create-order", headers=headers, json={"bookingId": str(paid.id)}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Payment already completed"

    response = await client.post(
        "/payments/create-order", headers=headers, json={"bookingId": str(cancelled.id)}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Booking is cancelled"


@pytest.mark.asyncio
async def test_create_order_other_users_booking(
    client: AsyncClient, db: AsyncSession, user: Profile, other_user: Profile
):
    """Someone else's booking is reported missing."""
    booking = await make_booking(db, other_user)
    response = await client.post(
        "/payments/create-order",
        headers=auth_headers(user),
        json={"bookingId": str(booking.id)},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_order_gateway_failure(client: AsyncClient, user: Profile):
    """Razorpay errors surface as 502."""
    with patch("services.payment.router.razorpay.Client") as mock_rzp:
        mock_rzp.return_value.order.create.side_effect = RuntimeError("gateway down")
        response = await client.post(
            "/payments/create-order", headers=auth_headers(user), json={"amount": 500}
        )
    assert response.status_code == 502
    assert "gateway down" in response.json()["error"]


@pytest.mark.asyncio
async def test_create_order_without_keys(client: AsyncClient, user: Profile, monkeypatch):
    """Without Razorpay keys the service is unavailable."""
    monkeypatch.setattr(settings, "RAZORPAY_KEY_ID", "")
    response = await client.post(
        "/payments/create-order", headers=auth_headers(user), json={"amount": 500}
    )
    assert response.status_code == 503


# ── Verify ────────────────────────────────────────────────────

def _checkout(order_id: str, payment_id: str, booking_id) -> dict:
    return {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": sign_razorpay_payment(order_id, payment_id),
        "booking_id": str(booking_id),
    }


@pytest.mark.asyncio
async def test_verify_payment_marks_booking_paid(
    client: AsyncClient, db: AsyncSession, user: Profile
):
    """A signed checkout for the booking's own order marks it paid via Razorpay."""
    booking = await make_booking(db, user, razorpay_order_id="order_1")
    response = await client.post(
        "/payments/verify", headers=auth_headers(user), json=_checkout("order_1", "pay_1", booking.id)
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    await db.refresh(booking)
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.payment_method == PaymentMethod.RAZORPAY
    assert booking.razorpay_payment_id == "pay_1"


@pytest.mark.asyncio
async def test_verify_payment_bad_signature(client: AsyncClient, db: AsyncSession, user: Profile):
    """A forged signature is refused and the booking stays unpaid."""
    booking = await make_booking(db, user, razorpay_order_id="order_1")
    body = _checkout("order_1", "pay_1", booking.id)
    body["razorpay_signature"] = "forged"
    response = await client.post("/payments/verify", headers=auth_headers(user), json=body)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid payment signature"

    await db.refresh(booking)
    assert booking.payment_status == PaymentStatus.UNPAID


@pytest.mark.asyncio
async def test_verify_payment_rejects_signature_for_another_order(
    client: AsyncClient, db: AsyncSession, user: Profile
):
    """A valid signature for a cheaper order cannot settle a different booking."""
    booking = await make_booking(db, user, total_amount=5000, razorpay_order_id="order_BIG")
    response = await client.post(
        "/payments/verify",
        headers=auth_headers(user),
        json=_checkout("order_CHEAP", "pay_1", booking.id),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Order does not match this booking"

    await db.refresh(booking)
    assert booking.payment_status == PaymentStatus.UNPAID
    assert booking.razorpay_order_id == "order_BIG"


@pytest.mark.asyncio
async def test_verify_payment_requires_an_opened_order(
    client: AsyncClient, db: AsyncSession, user: Profile
):
    """Bookings without a create-order call cannot be verified."""
    booking = await make_booking(db, user)
    response = await client.post(
        "/payments/verify", headers=auth_headers(user), json=_checkout("order_1", "pay_1", booking.id)
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_verify_payment_refuses_cancelled_booking(
    client: AsyncClient, db: AsyncSession, user: Profile
):
    """A cancelled booking is never marked paid."""
    booking = await make_booking(
        db, user, status=BookingStatus.CANCELLED, razorpay_order_id="order_1"
    )
    response = await client.post(
        "/payments/verify", headers=auth_headers(user), json=_checkout("order_1", "pay_1", booking.id)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Booking is cancelled"


@pytest.mark.asyncio
async def test_verify_payment_keeps_wallet_payment_method(
    client: AsyncClient, db: AsyncSession, user: Profile
):
    """An already paid wallet booking keeps its method, so its refund still applies."""
    booking = await make_booking(
        db,
        user,
        payment_method=PaymentMethod.WALLET,
        payment_status=PaymentStatus.PAID,
        razorpay_order_id="order_1",
    )
    response = await client.post(
        "/payments/verify", headers=auth_headers(user), json=_checkout("order_1", "pay_1", booking.id)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Payment already completed"

    await db.refresh(booking)
    assert booking.payment_method == PaymentMethod.WALLET


@pytest.mark.asyncio
async def test_verify_payment_unknown_booking(client: AsyncClient, user: Profile):
    """Verifying against a booking that does not exist is a 404."""
    response = await client.post(
        "/payments/verify",
        headers=auth_headers(user),
        json=_checkout("order_1", "pay_1", uuid.uuid4()),
    )
    assert response.status_code == 404

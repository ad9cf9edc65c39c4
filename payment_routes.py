from __future__ import annotations
import os, json, hmac, hashlib, logging, time, traceback
from typing import Dict, Any, Optional

import razorpay
from razorpay.errors import BadRequestError, ServerError
from fastapi import APIRouter, HTTPException, Request, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from db import get_db, User, Payment
from auth import get_current_user
import entitlements as ent

log = logging.getLogger("payments")
router = APIRouter(prefix="/api/payment", tags=["payments"])

# ------------------------- Environment / Config ------------------------------

RZP_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "").strip()
RZP_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "").strip()
RZP_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "").strip()

DEFAULT_CURRENCY = os.getenv("PAY_DEFAULT_CURRENCY", "INR").upper()

STATUS_CREATED = "created"
STATUS_CAPTURED = "captured"

_rzp: Optional["razorpay.Client"] = None


def get_razorpay() -> Optional["razorpay.Client"]:
    global _rzp
    if _rzp is None:
        if RZP_KEY_ID and RZP_SECRET:
            _rzp = razorpay.Client(auth=(RZP_KEY_ID, RZP_SECRET))
        else:
            log.warning("Razorpay client not initialized (missing keys).")
    return _rzp

# ------------------------- Helpers ------------------------------------------

def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signature_valid(order_id: str, payment_id: str, signature: str, secret: str = "") -> bool:
    """Razorpay checkout signature: HMAC-SHA256 hex over "order_id|payment_id"."""
    secret = secret or RZP_SECRET
    if not secret:
        return False
    expected = _hmac_hex(secret, f"{order_id}|{payment_id}".encode())
    return hmac.compare_digest(expected, signature or "")


def reconcile_payment(db: Session, payment: Payment, payment_id: str, details: Dict[str, Any]) -> bool:
    """
    Mark `payment` captured and grant what it bought, in one commit.
    Returns False when it was already captured (nothing granted twice).
    """
    if payment.status == STATUS_CAPTURED:
        return False

    payment.status = STATUS_CAPTURED
    payment.payment_id = payment_id
    payment.payment_details = details

    if payment.module == ent.ALL_MODULES:
        ent.activate_subscription(db, payment.user_id, ent.plan_for_amount(payment.amount))
    else:
        ent.grant_module_unlimited(db, payment.user_id, payment.module)

    db.commit()
    log.info("Payment %s captured for user=%s module=%s", payment.id, payment.user_id, payment.module)
    return True

# ------------------------- Routes -------------------------------------------

@router.get("/config")
def payment_config():
    return {
        "key": RZP_KEY_ID or None,
        "has_secret": bool(RZP_SECRET),
        "currency": DEFAULT_CURRENCY,
        "prices": {
            "module": ent.MODULE_PRICE,
            ent.PLAN_PREMIUM: ent.PREMIUM_PRICE,
            ent.PLAN_ANNUAL: ent.ANNUAL_PRICE,
        },
    }


class CreateOrderBody(BaseModel):
    module: Optional[str] = None
    plan: Optional[str] = None


@router.post("/create-order")
def create_order(
    body: CreateOrderBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    rzp=Depends(get_razorpay),
):
    module = (body.module or "").strip()
    if module != ent.ALL_MODULES and not ent.is_valid_module(module):
        raise HTTPException(400, "Invalid module")

    amount = ent.price_for(module, body.plan)
    if amount is None:
        raise HTTPException(400, "Invalid plan for module")

    if not rzp:
        raise HTTPException(503, "Razorpay not initialized on server.")

    try:
        order = rzp.order.create(
            {
                "amount": amount * 100,  # subunits
                "currency": DEFAULT_CURRENCY,
                "receipt": f"receipt_{int(time.time() * 1000)}",
                "notes": {"user_id": str(current_user.id), "module": module, "plan": body.plan or "module"},
            }
        )
    except BadRequestError as e:
        msg = getattr(e, "args", [str(e)])[0]
        raise HTTPException(400, f"Order create failed: {msg}") from e
    except ServerError as e:
        msg = getattr(e, "args", [str(e)])[0]
        raise HTTPException(502, f"Razorpay server error: {msg}") from e

    try:
        db.add(Payment(
            user_id=current_user.id,
            module=module,
            amount=amount,
            currency=DEFAULT_CURRENCY,
            status=STATUS_CREATED,
            payment_id=order.get("id"),
            order_id=order.get("id"),
            payment_details=order,
        ))
        db.commit()
    except Exception:
        db.rollback()
        log.error("Error creating payment order:\n%s", traceback.format_exc())
        raise HTTPException(500, "Failed to create payment order")

    return {"success": True, "order": order, "key": RZP_KEY_ID or None}


class VerifyBody(BaseModel):
    razorpay_payment_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


@router.post("/verify")
def verify_payment(
    body: VerifyBody,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not RZP_SECRET:
        raise HTTPException(503, "Razorpay not initialized on server.")

    order_id = body.razorpay_order_id or ""
    payment_id = body.razorpay_payment_id or ""
    if not signature_valid(order_id, payment_id, body.razorpay_signature or ""):
        raise HTTPException(400, "Invalid payment signature")

    payment = (
        db.query(Payment)
        .filter(Payment.user_id == current_user.id, Payment.order_id == order_id)
        .first()
    )
    if not payment:
        raise HTTPException(404, "Payment record not found")

    try:
        reconcile_payment(db, payment, payment_id, {
            "razorpay_payment_id": payment_id,
            "razorpay_order_id": order_id,
            "razorpay_signature": body.razorpay_signature,
        })
    except Exception:
        db.rollback()
        log.error("Error verifying payment:\n%s", traceback.format_exc())
        raise HTTPException(500, "Failed to verify payment")

    return {"success": True}

# -------------------------- Webhook ------------------------------------------

@router.post("/razorpay/webhook")
async def razorpay_webhook(request: Request, db: Session = Depends(get_db)):
    """
    payment.captured / order.paid => same reconciliation as /verify, keyed by
    order id. Covers checkouts where the browser never came back.
    """
    if not RZP_WEBHOOK_SECRET:
        raise HTTPException(503, "Webhook secret not configured")

    body = await request.body()
    signature = request.headers.get("X-Razorpay-Signature", "")
    if not hmac.compare_digest(_hmac_hex(RZP_WEBHOOK_SECRET, body), signature or ""):
        raise HTTPException(401, "Invalid signature")

    try:
        event = json.loads(body.decode("utf-8"))
        etype = event.get("event", "")
        payload = event.get("payload", {}) or {}
        pay_entity = (payload.get("payment") or {}).get("entity") or {}
        order_entity = (payload.get("order") or {}).get("entity") or {}
        order_id = pay_entity.get("order_id") or order_entity.get("id")
    except (ValueError, AttributeError):
        # not JSON, or some level of it is not an object
        raise HTTPException(400, "Invalid payload")

    if etype not in ("payment.captured", "order.paid"):
        return {"ok": True, "note": f"ignored:{etype}"}
    if not order_id:
        log.warning("Webhook %s without order id; payload keys=%s", etype, list(payload.keys()))
        return {"ok": True, "note": "no-order-id"}

    payment = db.query(Payment).filter(Payment.order_id == order_id).first()
    if not payment:
        log.warning("Webhook %s: no payment for order=%s", etype, order_id)
        return {"ok": True, "note": "payment-not-found"}

    try:
        granted = reconcile_payment(db, payment, pay_entity.get("id") or payment.payment_id, {
            "event": etype,
            "razorpay_payment_id": pay_entity.get("id"),
            "razorpay_order_id": order_id,
        })
    except Exception as e:
        db.rollback()
        log.error("Webhook DB update failed: %s", e)
        raise HTTPException(500, "DB update failed")

    return {"ok": True, "event": etype, "granted": granted}

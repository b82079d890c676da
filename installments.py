"""
Installment schedules and installment payment review.

A deferred-payment purchase is split into `number_of_installments` parts
stored in ``paymentInstallments``. Amounts are rounded to the currency's
precision with the remainder on the last part, so the parts always add up to
the transaction total.
"""

import calendar
from datetime import datetime, timedelta
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from app_logger import get_logger
from database import as_utc, get_document, new_id, now_utc, require_document, serialize_doc, update_document
from errors import InvalidRequestError
from events import EVENTS
from users import USERS

logger = get_logger("installments")

INSTALLMENTS = "paymentInstallments"
TRANSACTIONS = "ticketTransactions"

FREQUENCIES = ("weekly", "biweekly", "monthly")
ZERO_DECIMAL_CURRENCIES = {"CLP"}


def currency_unit(currency: str) -> Decimal:
    return Decimal("1") if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES else Decimal("0.01")


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def calculate_installment_dates(start: datetime, count: int, frequency: str) -> List[datetime]:
    if frequency not in FREQUENCIES:
        raise InvalidRequestError(f"Unknown installment frequency: {frequency}")
    if count < 1:
        raise InvalidRequestError("At least one installment is required")

    dates = []
    for i in range(count):
        if frequency == "weekly":
            dates.append(start + timedelta(days=7 * i))
        elif frequency == "biweekly":
            dates.append(start + timedelta(days=14 * i))
        else:
            # offsets from the start date so a 31st does not drift after February
            dates.append(add_months(start, i))
    return dates


def split_amount(total: float, count: int, currency: str) -> List[float]:
    if count < 1:
        raise InvalidRequestError("At least one installment is required")
    unit = currency_unit(currency)
    total_dec = Decimal(str(total)).quantize(unit)
    part = (total_dec / count).quantize(unit, rounding=ROUND_DOWN)
    last = total_dec - part * (count - 1)
    return [float(part)] * (count - 1) + [float(last)]


def amounts_match_total(amounts: List[float], total: float, currency: str) -> bool:
    unit = currency_unit(currency)
    diff = sum(Decimal(str(a)) for a in amounts) - Decimal(str(total))
    return abs(diff) <= unit


def build_installments(
    transaction_id: str,
    total: float,
    currency: str,
    count: int,
    frequency: str,
    start: Optional[datetime] = None,
    first_paid_by: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Build the installment documents for a transaction.

    When `first_paid_by` is given (admin-issued tickets) the first installment
    is created already paid and approved by that admin.
    """
    start = start or now_utc()
    dates = calculate_installment_dates(start, count, frequency)
    amounts = split_amount(total, count, currency)

    installments = []
    for number, (due_date, amount) in enumerate(zip(dates, amounts), start=1):
        installment = {
            "id": new_id(),
            "transaction_id": transaction_id,
            "installment_number": number,
            "amount": amount,
            "currency": currency,
            "due_date": due_date,
            "status": "pending",
            "admin_approved": False,
        }
        if number == 1 and first_paid_by:
            stamp = now_utc()
            installment.update(
                status="paid",
                admin_approved=True,
                approved_by=first_paid_by,
                approved_at=stamp,
                payment_date=stamp,
            )
        installments.append(installment)
    return installments


def get_transaction_installments(db: Database, transaction_id: str) -> List[Dict[str, Any]]:
    cursor = db[INSTALLMENTS].find({"transaction_id": transaction_id}).sort("installment_number", 1)
    return [serialize_doc(d) for d in cursor]


def get_installment(db: Database, installment_id: str) -> Dict[str, Any]:
    return require_document(db, INSTALLMENTS, installment_id, "Installment")


def _require_open(installment: Dict[str, Any]) -> None:
    if installment.get("status") == "cancelled":
        raise InvalidRequestError(f"Installment {installment['id']} is cancelled")


def submit_installment_payment(db: Database, installment_id: str, payment_proof_url: str) -> Dict[str, Any]:
    if not payment_proof_url:
        raise InvalidRequestError("A payment proof is required")
    installment = get_installment(db, installment_id)
    _require_open(installment)
    if installment.get("status") == "paid":
        raise InvalidRequestError(f"Installment {installment_id} is already paid")

    update_document(db, INSTALLMENTS, installment_id, {"status": "pending", "payment_proof_url": payment_proof_url})
    logger.info("Payment proof submitted for installment %s", installment_id)
    return get_installment(db, installment_id)


def approve_installment_payment(db: Database, installment_id: str, admin_id: str) -> Dict[str, Any]:
    installment = get_installment(db, installment_id)
    _require_open(installment)

    stamp = now_utc()
    update_document(
        db,
        INSTALLMENTS,
        installment_id,
        {
            "status": "paid",
            "payment_date": stamp,
            "admin_approved": True,
            "approved_by": admin_id,
            "approved_at": stamp,
        },
    )
    logger.info("Installment %s approved by %s", installment_id, admin_id)
    check_all_installments_paid(db, installment["transaction_id"])
    return get_installment(db, installment_id)


def reject_installment_payment(db: Database, installment_id: str, admin_id: str, notes: str = "") -> Dict[str, Any]:
    installment = get_installment(db, installment_id)
    _require_open(installment)

    update_document(db, INSTALLMENTS, installment_id, {"status": "pending", "admin_approved": False, "notes": notes})
    logger.info("Installment %s rejected by %s", installment_id, admin_id)
    return get_installment(db, installment_id)


def check_all_installments_paid(db: Database, transaction_id: str) -> bool:
    installments = get_transaction_installments(db, transaction_id)
    all_paid = bool(installments) and all(i.get("status") == "paid" for i in installments)
    if all_paid:
        update_document(db, TRANSACTIONS, transaction_id, {"all_installments_paid": True})
        logger.info("All installments paid for transaction %s", transaction_id)
    return all_paid


def cancel_transaction_installments(db: Database, transaction_id: str) -> int:
    result = db[INSTALLMENTS].update_many(
        {"transaction_id": transaction_id},
        {"$set": {"status": "cancelled", "updated_at": now_utc()}},
    )
    return result.modified_count


def get_pending_installment_payments(db: Database) -> List[Dict[str, Any]]:
    """Installments waiting for admin review: pending with a proof attached, oldest due first."""
    pending = [
        serialize_doc(d)
        for d in db[INSTALLMENTS].find({"status": "pending"})
        if d.get("payment_proof_url")
    ]
    pending.sort(key=lambda i: as_utc(i["due_date"]))

    for installment in pending:
        transaction = get_document(db, TRANSACTIONS, installment["transaction_id"])
        if transaction is not None:
            transaction["event"] = get_document(db, EVENTS, transaction["event_id"])
            installment["user"] = get_document(db, USERS, transaction["user_id"])
        else:
            installment["user"] = None
        installment["transaction"] = transaction
    return pending


def mark_overdue_installments(db: Database, now: Optional[datetime] = None) -> int:
    """Flag pending installments past their due date with no proof submitted."""
    now = as_utc(now or now_utc())
    overdue_ids = [
        d["_id"]
        for d in db[INSTALLMENTS].find({"status": "pending"})
        if not d.get("payment_proof_url") and as_utc(d["due_date"]) < now
    ]
    if not overdue_ids:
        return 0
    db[INSTALLMENTS].update_many(
        {"_id": {"$in": overdue_ids}},
        {"$set": {"status": "overdue", "updated_at": now_utc()}},
    )
    logger.info("Marked %d installments overdue", len(overdue_ids))
    return len(overdue_ids)

"""
Ticket transactions.

A transaction is one purchase. Its tickets are embedded in the
``ticket_items`` array of the transaction document; there is no separate
ticket collection. Installments (for deferred payments) are stored in
``paymentInstallments`` and handled by the installments module.
"""

from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pymongo.database import Database

from app_logger import get_logger
from database import as_utc, get_document, new_id, now_utc, require_document, serialize_doc, update_document
from errors import InvalidRequestError, NotFoundError
from events import EVENTS, find_zone_pricing, get_event, release_tickets, remaining_tickets, reserve_tickets
from installments import (
    INSTALLMENTS,
    TRANSACTIONS,
    amounts_match_total,
    build_installments,
    cancel_transaction_installments,
    get_transaction_installments,
)
from users import USERS

logger = get_logger("tickets")

MIN_INSTALLMENTS = 2
MAX_INSTALLMENTS = 12


def build_ticket_items(
    transaction_id: str,
    event_id: str,
    zone_id: str,
    phase_id: str,
    price: float,
    currency: str,
    quantity: int,
    status: str = "pending",
    pdf_urls: Iterable[str] = (),
) -> List[Dict[str, Any]]:
    pdf_urls = list(pdf_urls)
    stamp = now_utc()
    items = []
    for i in range(quantity):
        items.append({
            "id": new_id(),
            "transaction_id": transaction_id,
            "event_id": event_id,
            "zone_id": zone_id,
            "phase_id": phase_id,
            "price": price,
            "currency": currency,
            "status": status,
            "is_nominated": False,
            "ticket_pdf_url": pdf_urls[i] if i < len(pdf_urls) else "",
            "created_at": stamp,
            "updated_at": stamp,
        })
    return items


def create_ticket_transaction(
    db: Database,
    transaction: Dict[str, Any],
    installments: Iterable[Dict[str, Any]] = (),
) -> str:
    """
    Persist a transaction and its installments.

    The installment write is undone by deleting the transaction if it fails,
    so callers never see a transaction whose schedule is missing.
    """
    installments = list(installments)
    if not transaction.get("user_id"):
        raise InvalidRequestError("user_id is required for ticket transaction")
    if not transaction.get("ticket_items"):
        raise InvalidRequestError("A transaction needs at least one ticket")

    if transaction.get("payment_type") == "installment":
        expected = transaction.get("number_of_installments")
        if len(installments) != expected:
            raise InvalidRequestError(f"Expected {expected} installments, got {len(installments)}")
        amounts = [i["amount"] for i in installments]
        if not amounts_match_total(amounts, transaction["total_amount"], transaction["currency"]):
            raise InvalidRequestError("Installment amounts do not add up to the transaction total")

    doc = {k: v for k, v in transaction.items() if v is not None}
    transaction_id = doc.pop("id", None) or new_id()
    stamp = now_utc()
    doc.update(_id=transaction_id, created_at=stamp, updated_at=stamp)

    db[TRANSACTIONS].insert_one(doc)
    if installments:
        install_docs = []
        for installment in installments:
            item = {k: v for k, v in installment.items() if v is not None}
            item["_id"] = item.pop("id", None) or new_id()
            item["transaction_id"] = transaction_id
            item.setdefault("created_at", stamp)
            item["updated_at"] = stamp
            install_docs.append(item)
        try:
            db[INSTALLMENTS].insert_many(install_docs)
        except Exception:
            logger.exception("Installment write failed; removing transaction %s", transaction_id)
            db[TRANSACTIONS].delete_one({"_id": transaction_id})
            db[INSTALLMENTS].delete_many({"transaction_id": transaction_id})
            raise

    logger.info(
        "Ticket transaction %s created for user %s (%d tickets, %s)",
        transaction_id, doc["user_id"], len(doc["ticket_items"]), doc.get("payment_type", "full"),
    )
    return transaction_id


def purchase_tickets(db: Database, user_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
    """Create a pending transaction for `quantity` tickets of one zone in one sales phase."""
    event = get_event(db, request["event_id"])
    if not event.get("sell_tickets_on_platform", True):
        raise InvalidRequestError("Tickets for this event are not sold on the platform")
    if event.get("status") in ("cancelled", "completed"):
        raise InvalidRequestError(f"Event is {event['status']}")

    _, pricing = find_zone_pricing(event, request["phase_id"], request["zone_id"])
    quantity = request["quantity"]
    if quantity < 1:
        raise InvalidRequestError("Quantity must be at least 1")
    if remaining_tickets(pricing) <= 0:
        raise InvalidRequestError(f"Zone {request['zone_id']} is sold out")

    payment_method = request.get("payment_method", "offline")
    proof_url = request.get("payment_proof_url") or ""
    if payment_method == "offline":
        if not event.get("allow_offline_payments", True):
            raise InvalidRequestError("This event does not accept offline payments")
        if not proof_url:
            raise InvalidRequestError("A payment proof is required for offline payments")

    payment_type = request.get("payment_type", "full")
    count = frequency = None
    if payment_type == "installment":
        if not event.get("allow_installment_payments"):
            raise InvalidRequestError("This event does not accept installment payments")
        count = request.get("number_of_installments") or MIN_INSTALLMENTS
        frequency = request.get("installment_frequency") or "monthly"
        if not MIN_INSTALLMENTS <= count <= MAX_INSTALLMENTS:
            raise InvalidRequestError(f"Installments must be between {MIN_INSTALLMENTS} and {MAX_INSTALLMENTS}")

    currency = event.get("currency", "USD")
    unit_price = float(pricing["price"])
    total = round(unit_price * quantity, 2)
    transaction_id = new_id()

    transaction = {
        "id": transaction_id,
        "user_id": user_id,
        "event_id": event["id"],
        "total_amount": total,
        "currency": currency,
        "payment_method": payment_method,
        "payment_status": "pending",
        "payment_type": payment_type,
        "offline_payment_method": request.get("offline_payment_method") if payment_method == "offline" else None,
        "payment_proof_url": proof_url,
        "ticket_items": build_ticket_items(
            transaction_id, event["id"], request["zone_id"], request["phase_id"], unit_price, currency, quantity,
        ),
        "number_of_installments": count,
        "installment_frequency": frequency,
        "is_courtesy": False,
    }
    installments = []
    if payment_type == "installment":
        installments = build_installments(transaction_id, total, currency, count, frequency)

    reserve_tickets(db, event["id"], request["phase_id"], request["zone_id"], quantity)
    try:
        create_ticket_transaction(db, transaction, installments)
    except Exception:
        release_tickets(db, event["id"], request["phase_id"], request["zone_id"], quantity)
        raise
    return get_ticket_transaction(db, transaction_id)


def get_ticket_transaction(db: Database, transaction_id: str) -> Dict[str, Any]:
    transaction = require_document(db, TRANSACTIONS, transaction_id, "Transaction")
    return _with_installments(db, transaction)


def _with_installments(db: Database, transaction: Dict[str, Any]) -> Dict[str, Any]:
    transaction["ticket_items"] = transaction.get("ticket_items") or []
    if transaction.get("payment_type") == "installment":
        transaction["installments"] = get_transaction_installments(db, transaction["id"])
    else:
        transaction["installments"] = []
    return transaction


def _with_user_and_event(db: Database, transaction: Dict[str, Any]) -> Dict[str, Any]:
    transaction["user"] = get_document(db, USERS, transaction["user_id"])
    transaction["event"] = get_document(db, EVENTS, transaction["event_id"])
    return transaction


def get_user_ticket_transactions(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db[TRANSACTIONS].find({"user_id": user_id}).sort("created_at", -1)
    return [_with_installments(db, serialize_doc(d)) for d in cursor]


def get_pending_ticket_transactions(db: Database) -> List[Dict[str, Any]]:
    cursor = db[TRANSACTIONS].find({"payment_status": "pending"}).sort("created_at", -1)
    return [_with_user_and_event(db, _with_installments(db, serialize_doc(d))) for d in cursor]


def get_paid_ticket_transactions(db: Database) -> List[Dict[str, Any]]:
    """Approved transactions; installment ones only once every installment is paid."""
    paid = []
    for doc in db[TRANSACTIONS].find({"payment_status": "approved"}).sort("created_at", -1):
        transaction = _with_installments(db, serialize_doc(doc))
        if transaction["payment_type"] == "installment":
            if not all(i.get("status") == "paid" for i in transaction["installments"]):
                continue
        paid.append(_with_user_and_event(db, transaction))
    return paid


def approve_ticket_transaction(
    db: Database,
    transaction_id: str,
    admin_id: str,
    tickets_download_available_date: datetime,
    admin_notes: str = "",
    ticket_pdf_urls: Iterable[str] = (),
) -> Dict[str, Any]:
    if not isinstance(tickets_download_available_date, datetime):
        raise InvalidRequestError("Invalid download date provided")
    transaction = require_document(db, TRANSACTIONS, transaction_id, "Transaction")
    if transaction.get("payment_status") == "rejected":
        raise InvalidRequestError(f"Transaction {transaction_id} was rejected and cannot be approved")
    pdf_urls = list(ticket_pdf_urls)

    stamp = now_utc()
    items = []
    for index, ticket in enumerate(transaction.get("ticket_items") or []):
        items.append({
            **ticket,
            "status": "approved",
            "ticket_pdf_url": pdf_urls[index] if index < len(pdf_urls) else ticket.get("ticket_pdf_url") or "",
            "updated_at": stamp,
        })

    update_document(db, TRANSACTIONS, transaction_id, {
        "payment_status": "approved",
        "reviewed_by": admin_id,
        "reviewed_at": stamp,
        "admin_notes": admin_notes,
        "tickets_download_available_date": tickets_download_available_date,
        "ticket_items": items,
    })

    if transaction.get("payment_type") == "installment":
        db[INSTALLMENTS].update_one(
            {"transaction_id": transaction_id, "installment_number": 1},
            {"$set": {
                "status": "paid",
                "payment_date": stamp,
                "admin_approved": True,
                "approved_by": admin_id,
                "approved_at": stamp,
                "updated_at": stamp,
            }},
        )

    logger.info("Transaction %s approved by %s", transaction_id, admin_id)
    return get_ticket_transaction(db, transaction_id)


def reject_ticket_transaction(db: Database, transaction_id: str, admin_id: str, admin_notes: str = "") -> Dict[str, Any]:
    transaction = require_document(db, TRANSACTIONS, transaction_id, "Transaction")
    tickets = transaction.get("ticket_items") or []
    if any(ticket.get("status") == "used" for ticket in tickets):
        raise InvalidRequestError(f"Transaction {transaction_id} has checked-in tickets and cannot be rejected")
    already_rejected = transaction.get("payment_status") == "rejected"

    stamp = now_utc()
    items = [{**ticket, "status": "cancelled", "updated_at": stamp} for ticket in tickets]
    update_document(db, TRANSACTIONS, transaction_id, {
        "payment_status": "rejected",
        "reviewed_by": admin_id,
        "reviewed_at": stamp,
        "admin_notes": admin_notes,
        "ticket_items": items,
    })
    cancelled = cancel_transaction_installments(db, transaction_id)
    if not already_rejected:
        _release_seats(db, tickets)

    logger.info("Transaction %s rejected by %s (%d installments cancelled)", transaction_id, admin_id, cancelled)
    return get_ticket_transaction(db, transaction_id)


def _release_seats(db: Database, tickets: List[Dict[str, Any]]) -> None:
    # admin-assigned tickets carry no phase and never took from the sold counter
    seats = Counter(
        (t["event_id"], t["phase_id"], t["zone_id"]) for t in tickets if t.get("phase_id")
    )
    for (event_id, phase_id, zone_id), quantity in seats.items():
        try:
            release_tickets(db, event_id, phase_id, zone_id, quantity)
        except NotFoundError:
            logger.warning("Event %s is gone; %d seats not released", event_id, quantity)


def _ticket_index(transaction: Dict[str, Any], ticket_id: str) -> int:
    items = transaction.get("ticket_items")
    if not isinstance(items, list):
        raise InvalidRequestError(f"Transaction {transaction['id']} does not have a valid ticket_items array")
    for index, item in enumerate(items):
        if item.get("id") == ticket_id:
            return index
    raise NotFoundError(f"Ticket with ID {ticket_id} not found in transaction {transaction['id']}")


def _replace_item(items: List[Dict[str, Any]], index: int, **fields) -> List[Dict[str, Any]]:
    items = list(items)
    items[index] = {**items[index], **fields, "updated_at": now_utc()}
    return items


def nominate_ticket(
    db: Database,
    ticket_id: str,
    nominee_first_name: str,
    nominee_last_name: str,
    nominee_doc_type: str,
    nominee_doc_number: str,
    transaction_id: Optional[str] = None,
) -> Dict[str, Any]:
    if not transaction_id:
        raise InvalidRequestError("transaction_id is required to nominate a ticket")
    transaction = require_document(db, TRANSACTIONS, transaction_id, "Transaction")
    index = _ticket_index(transaction, ticket_id)

    items = _replace_item(
        transaction["ticket_items"],
        index,
        is_nominated=True,
        nominee_first_name=nominee_first_name,
        nominee_last_name=nominee_last_name,
        nominee_doc_type=nominee_doc_type,
        nominee_doc_number=nominee_doc_number,
    )
    update_document(db, TRANSACTIONS, transaction_id, {"ticket_items": items})

    logger.info("Ticket %s nominated in transaction %s", ticket_id, transaction_id)
    return items[index]


def update_ticket_pdf(db: Database, transaction_id: str, ticket_id: str, pdf_url: str) -> Dict[str, Any]:
    transaction = require_document(db, TRANSACTIONS, transaction_id, "Transaction")
    index = _ticket_index(transaction, ticket_id)
    items = _replace_item(transaction["ticket_items"], index, ticket_pdf_url=pdf_url)
    update_document(db, TRANSACTIONS, transaction_id, {"ticket_items": items})
    return items[index]


def update_ticket_download_date(db: Database, transaction_id: str, download_date: datetime) -> Dict[str, Any]:
    if not isinstance(download_date, datetime):
        raise InvalidRequestError("Invalid download date provided")
    if not update_document(db, TRANSACTIONS, transaction_id, {"tickets_download_available_date": download_date}):
        raise NotFoundError(f"Transaction with ID {transaction_id} not found")
    return get_ticket_transaction(db, transaction_id)


def update_ticket_transaction(db: Database, transaction_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in fields.items() if k not in ("id", "_id", "created_at")}
    if not update_document(db, TRANSACTIONS, transaction_id, fields):
        raise NotFoundError(f"Transaction with ID {transaction_id} not found")
    logger.info("Transaction %s updated: %s", transaction_id, sorted(fields))
    return get_ticket_transaction(db, transaction_id)


def assign_tickets_to_user(
    db: Database,
    admin_id: str,
    user_id: str,
    event_id: str,
    zone_id: str,
    quantity: int,
    price: float,
    is_courtesy: bool,
    payment_type: str = "full",
    number_of_installments: Optional[int] = None,
    installment_frequency: Optional[str] = None,
    payment_proof_url: Optional[str] = None,
    tickets_download_available_date: Optional[datetime] = None,
    ticket_pdf_urls: Iterable[str] = (),
) -> Dict[str, Any]:
    """Issue tickets from the admin panel; they are approved on creation."""
    if get_document(db, USERS, user_id) is None:
        raise NotFoundError(f"User with ID {user_id} not found")
    event = get_event(db, event_id)
    if quantity < 1:
        raise InvalidRequestError("Quantity must be at least 1")

    currency = event.get("currency", "USD")
    total = round(price * quantity, 2)
    transaction_id = new_id()
    stamp = now_utc()

    installments = []
    if payment_type == "installment":
        if not number_of_installments or not installment_frequency:
            raise InvalidRequestError("Installment assignments need number_of_installments and installment_frequency")
        if not MIN_INSTALLMENTS <= number_of_installments <= MAX_INSTALLMENTS:
            raise InvalidRequestError(f"Installments must be between {MIN_INSTALLMENTS} and {MAX_INSTALLMENTS}")
        installments = build_installments(
            transaction_id, total, currency, number_of_installments, installment_frequency,
            first_paid_by=admin_id,
        )
    else:
        payment_type = "full"
        number_of_installments = installment_frequency = None

    transaction = {
        "id": transaction_id,
        "user_id": user_id,
        "event_id": event_id,
        "total_amount": total,
        "currency": currency,
        "payment_method": "offline",
        "payment_status": "approved",
        "payment_type": payment_type,
        "offline_payment_method": "transfer",
        "payment_proof_url": payment_proof_url or "",
        "admin_notes": "Courtesy ticket assigned by admin" if is_courtesy else "Ticket assigned by admin",
        "reviewed_by": admin_id,
        "reviewed_at": stamp,
        "tickets_download_available_date": tickets_download_available_date,
        "ticket_items": build_ticket_items(
            transaction_id, event_id, zone_id, "", price, currency, quantity,
            status="approved", pdf_urls=ticket_pdf_urls,
        ),
        "is_courtesy": is_courtesy,
        "number_of_installments": number_of_installments,
        "installment_frequency": installment_frequency,
    }
    create_ticket_transaction(db, transaction, installments)
    logger.info("Admin %s assigned %d tickets to user %s (courtesy=%s)", admin_id, quantity, user_id, is_courtesy)
    return get_ticket_transaction(db, transaction_id)


def is_download_date_reached(download_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """Compare calendar days in UTC so the time of day never blocks a download."""
    if download_date is None:
        return False
    now = as_utc(now or now_utc())
    return now.date() >= as_utc(download_date).date()


def is_ticket_downloadable(transaction: Dict[str, Any], ticket: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    if not ticket.get("ticket_pdf_url"):
        return False
    if transaction.get("payment_status") != "approved":
        return False
    if ticket.get("status") != "approved":
        return False
    if transaction.get("is_courtesy"):
        return True
    return is_download_date_reached(transaction.get("tickets_download_available_date"), now)


def get_ticket_download(db: Database, transaction_id: str, ticket_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    transaction = get_ticket_transaction(db, transaction_id)
    ticket = transaction["ticket_items"][_ticket_index(transaction, ticket_id)]
    return {
        "ticket_id": ticket_id,
        "downloadable": is_ticket_downloadable(transaction, ticket, now),
        "ticket_pdf_url": ticket.get("ticket_pdf_url") or None,
        "download_available_date": transaction.get("tickets_download_available_date"),
    }


def check_in_ticket(db: Database, transaction_id: str, ticket_id: str) -> Dict[str, Any]:
    transaction = require_document(db, TRANSACTIONS, transaction_id, "Transaction")
    index = _ticket_index(transaction, ticket_id)
    ticket = transaction["ticket_items"][index]

    if ticket.get("status") == "used":
        return {"status": "already_checked_in", "checked_in_at": ticket.get("used_at")}
    if transaction.get("payment_status") != "approved" or ticket.get("status") != "approved":
        raise InvalidRequestError(f"Ticket {ticket_id} is not valid for entry (status {ticket.get('status')})")

    stamp = now_utc()
    items = _replace_item(transaction["ticket_items"], index, status="used", used_at=stamp)
    update_document(db, TRANSACTIONS, transaction_id, {"ticket_items": items})
    logger.info("Ticket %s checked in", ticket_id)
    return {"status": "checked_in", "ticket_id": ticket_id, "checked_in_at": stamp}

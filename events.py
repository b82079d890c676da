from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database

from app_logger import get_logger
from database import as_utc, create_document, get_documents, now_utc, require_document, serialize_doc, update_document
from errors import InvalidRequestError, NotFoundError

logger = get_logger("events")

EVENTS = "events"

# compare-and-set retries when two purchases touch the same event
SOLD_UPDATE_ATTEMPTS = 5


def create_event(db: Database, data: Dict[str, Any], created_by: str) -> str:
    if db[EVENTS].find_one({"slug": data["slug"]}):
        raise InvalidRequestError(f"An event with slug {data['slug']} already exists")
    event_id = create_document(db, EVENTS, {**data, "created_by": created_by})
    logger.info("Event %s created by %s", event_id, created_by)
    return event_id


def update_event(db: Database, event_id: str, fields: Dict[str, Any], updated_by: str) -> Dict[str, Any]:
    if not update_document(db, EVENTS, event_id, {**fields, "updated_by": updated_by}):
        raise NotFoundError(f"Event with ID {event_id} not found")
    return get_event(db, event_id)


def delete_event(db: Database, event_id: str) -> None:
    if db[EVENTS].delete_one({"_id": event_id}).deleted_count == 0:
        raise NotFoundError(f"Event with ID {event_id} not found")
    logger.info("Event %s deleted", event_id)


def get_event(db: Database, event_id: str) -> Dict[str, Any]:
    return require_document(db, EVENTS, event_id, "Event")


def get_event_by_slug(db: Database, slug: str) -> Dict[str, Any]:
    event = serialize_doc(db[EVENTS].find_one({"slug": slug}))
    if event is None:
        raise NotFoundError(f"Event {slug} not found")
    return event


def list_events(db: Database, status: Optional[str] = None) -> List[Dict[str, Any]]:
    filt = {"status": status} if status else {}
    return get_documents(db, EVENTS, filt, sort=[("start_date", 1)])


def _is_upcoming(event: Dict[str, Any], today) -> bool:
    start = event.get("start_date")
    return start is not None and as_utc(start).date() >= today


def _start_key(event: Dict[str, Any]) -> datetime:
    return as_utc(event["start_date"])


def get_featured_events(db: Database, limit: int = 6, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Highlighted published events starting today or later, soonest first."""
    today = as_utc(now or now_utc()).date()
    highlighted = get_documents(db, EVENTS, {"status": "published", "is_highlighted": True})
    upcoming = sorted((e for e in highlighted if _is_upcoming(e, today)), key=_start_key)
    return upcoming[:limit]


def get_events_by_country(db: Database, country: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Published events in a country: upcoming ones soonest first, then past ones latest first."""
    today = as_utc(now or now_utc()).date()
    published = [
        e for e in get_documents(db, EVENTS, {"status": "published", "country": country})
        if e.get("start_date") is not None
    ]
    upcoming = sorted((e for e in published if _is_upcoming(e, today)), key=_start_key)
    past = sorted((e for e in published if not _is_upcoming(e, today)), key=_start_key, reverse=True)
    return upcoming + past


def find_zone_pricing(event: Dict[str, Any], phase_id: str, zone_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Return (phase, zone pricing) for a purchase, refusing inactive phases and zones."""
    phase = next((p for p in event.get("sales_phases") or [] if p.get("id") == phase_id), None)
    if phase is None:
        raise NotFoundError(f"Sales phase {phase_id} not found in event {event['id']}")
    if not phase.get("is_active", True):
        raise InvalidRequestError(f"Sales phase {phase.get('name', phase_id)} is not active")

    zone = next((z for z in event.get("zones") or [] if z.get("id") == zone_id), None)
    if zone is None:
        raise NotFoundError(f"Zone {zone_id} not found in event {event['id']}")
    if not zone.get("is_active", True):
        raise InvalidRequestError(f"Zone {zone.get('name', zone_id)} is not active")

    pricing = next((p for p in phase.get("zones_pricing") or [] if p.get("zone_id") == zone_id), None)
    if pricing is None:
        raise InvalidRequestError(f"Zone {zone_id} has no price in phase {phase_id}")
    return phase, pricing


def remaining_tickets(pricing: Dict[str, Any]) -> int:
    return int(pricing.get("available", 0)) - int(pricing.get("sold", 0))


def _pricing_position(event: Dict[str, Any], phase_id: str, zone_id: str) -> Optional[Tuple[int, int]]:
    for pi, phase in enumerate(event.get("sales_phases") or []):
        if phase.get("id") != phase_id:
            continue
        for zi, pricing in enumerate(phase.get("zones_pricing") or []):
            if pricing.get("zone_id") == zone_id:
                return pi, zi
    return None


def _adjust_sold(db: Database, event_id: str, phase_id: str, zone_id: str, delta: int) -> bool:
    """
    Add `delta` to a zone's sold counter.

    The phases array is rewritten under a compare-and-set on ``inventory_version`` so
    two buyers cannot both take the last tickets. A positive delta is refused
    once it would pass ``available``.
    """
    for _ in range(SOLD_UPDATE_ATTEMPTS):
        doc = db[EVENTS].find_one({"_id": event_id})
        if doc is None:
            raise NotFoundError(f"Event with ID {event_id} not found")
        position = _pricing_position(doc, phase_id, zone_id)
        if position is None:
            return False
        pi, zi = position

        phases = [dict(p) for p in doc["sales_phases"]]
        prices = [dict(z) for z in phases[pi]["zones_pricing"]]
        pricing = prices[zi]
        if delta > 0 and delta > remaining_tickets(pricing):
            left = max(remaining_tickets(pricing), 0)
            raise InvalidRequestError(f"Only {left} tickets left for zone {zone_id}")
        pricing["sold"] = max(int(pricing.get("sold", 0)) + delta, 0)
        phases[pi]["zones_pricing"] = prices

        result = db[EVENTS].update_one(
            {"_id": event_id, "inventory_version": doc.get("inventory_version")},
            {"$set": {"sales_phases": phases, "updated_at": now_utc()}, "$inc": {"inventory_version": 1}},
        )
        if result.matched_count:
            return True
        logger.info("Event %s changed during a sold update, retrying", event_id)
    raise InvalidRequestError("The event is busy, please try again")


def reserve_tickets(db: Database, event_id: str, phase_id: str, zone_id: str, quantity: int) -> None:
    _adjust_sold(db, event_id, phase_id, zone_id, quantity)
    logger.info("Reserved %d tickets in event %s zone %s", quantity, event_id, zone_id)


def release_tickets(db: Database, event_id: str, phase_id: str, zone_id: str, quantity: int) -> None:
    if not _adjust_sold(db, event_id, phase_id, zone_id, -quantity):
        logger.warning("Could not release %d tickets: zone %s no longer priced in phase %s", quantity, zone_id, phase_id)

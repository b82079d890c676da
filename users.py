"""
User profiles and request identity.

Authentication happens upstream at the identity provider; requests arrive with
the authenticated user's id in the ``X-User-Id`` header and the profile (and
role) is read from the ``users`` collection.
"""

import re
from typing import Any, Dict, List, Optional

from fastapi import Depends, Header, HTTPException
from pymongo.database import Database

from app_logger import get_logger
from database import create_document, get_db, get_document, get_documents, serialize_doc, update_document
from errors import InvalidRequestError, NotFoundError

logger = get_logger("users")

USERS = "users"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# fields a profile update may touch
PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "country",
    "document_type",
    "document_number",
    "phone_prefix",
    "preferred_currency",
    "avatar",
)
ADMIN_FIELDS = ("role", "is_active")


def validate_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def sanitize_phone(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def get_user(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    return get_document(db, USERS, user_id)


def get_user_by_email(db: Database, email: str) -> Optional[Dict[str, Any]]:
    return serialize_doc(db[USERS].find_one({"email": email.lower().strip()}))


def list_users(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, USERS, sort=[("created_at", -1)])


def create_user_if_not_exists(db: Database, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Create the profile on first sign-in; an existing profile is returned untouched."""
    if not user_id:
        raise InvalidRequestError("User id is required")
    email = (data.get("email") or "").lower().strip()
    if not validate_email(email):
        raise InvalidRequestError("Invalid email format")

    existing = get_user(db, user_id)
    if existing is not None:
        return existing

    doc = {
        **data,
        "id": user_id,
        "email": email,
        "first_name": (data.get("first_name") or "").strip(),
        "last_name": (data.get("last_name") or "").strip(),
        "phone": sanitize_phone(data.get("phone")),
        # self sign-up never grants admin
        "role": "user",
        "is_active": True,
    }
    create_document(db, USERS, doc)
    logger.info("Created user profile %s", user_id)
    return get_user(db, user_id)


def update_user_profile(db: Database, user_id: str, data: Dict[str, Any], allow_admin_fields: bool = False) -> Dict[str, Any]:
    if get_user(db, user_id) is None:
        raise NotFoundError(f"User with ID {user_id} not found")

    fields: Dict[str, Any] = {}
    if data.get("email") is not None:
        if not validate_email(data["email"]):
            raise InvalidRequestError("Invalid email format")
        fields["email"] = data["email"].lower().strip()
    if data.get("phone") is not None:
        fields["phone"] = sanitize_phone(data["phone"])

    allowed = PROFILE_FIELDS + (ADMIN_FIELDS if allow_admin_fields else ())
    for name in allowed:
        if data.get(name) is not None:
            fields[name] = data[name]

    update_document(db, USERS, user_id, fields)
    return get_user(db, user_id)


def set_user_role(db: Database, user_id: str, role: str) -> Dict[str, Any]:
    if role not in ("user", "admin"):
        raise InvalidRequestError(f"Unknown role: {role}")
    if not update_document(db, USERS, user_id, {"role": role}):
        raise NotFoundError(f"User with ID {user_id} not found")
    logger.info("User %s role set to %s", user_id, role)
    return get_user(db, user_id)


# --- FastAPI dependencies ---

def get_current_user(
    x_user_id: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> Dict[str, Any]:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = get_user(db, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        logger.warning("User %s denied admin access", user.get("id"))
        raise HTTPException(status_code=403, detail="Admin access required")
    return user

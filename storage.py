"""
Blob storage for uploads (payment proofs, ticket PDFs, product and category
images).

Files are kept in the `files` collection keyed by a bucket-style path such as
``payment-proofs/<user>/<uuid>/<name>`` and served back by ``/api/files/<path>``.
"""

import posixpath
import re
from typing import Any, Dict, Optional

from bson import Binary
from pymongo.database import Database

from app_logger import get_logger
from config import get_settings
from database import new_id, now_utc
from errors import InvalidRequestError, NotFoundError

logger = get_logger("storage")

FILES = "files"
FILES_URL_PREFIX = "/api/files/"

# upload kind -> top level folder
FOLDERS = {
    "payment-proofs": "payment-proofs",
    "ticket-pdfs": "tickets",
    "product-images": "products",
    "category-images": "categories",
    "profile-images": "profile_images",
}

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: Optional[str]) -> str:
    name = posixpath.basename((filename or "").replace("\\", "/"))
    name = _UNSAFE.sub("_", name).strip("._")
    return name or "file"


def build_path(kind: str, owner_id: str, filename: Optional[str]) -> str:
    folder = FOLDERS.get(kind)
    if folder is None:
        raise InvalidRequestError(f"Unknown upload kind: {kind}")
    return f"{folder}/{owner_id}/{new_id()}/{safe_filename(filename)}"


def file_url(path: str) -> str:
    return FILES_URL_PREFIX + path


def upload_file(db: Database, path: str, content: bytes, content_type: Optional[str] = None) -> str:
    """Store `content` under `path` (overwriting) and return its download URL."""
    limit = get_settings().max_upload_bytes
    if not content:
        raise InvalidRequestError("Empty file")
    if len(content) > limit:
        raise InvalidRequestError(f"File exceeds the {limit} byte upload limit")

    db[FILES].replace_one(
        {"_id": path},
        {
            "_id": path,
            "content": Binary(content),
            "content_type": content_type or "application/octet-stream",
            "size": len(content),
            "uploaded_at": now_utc(),
        },
        upsert=True,
    )
    logger.info("Stored %s (%d bytes)", path, len(content))
    return file_url(path)


def get_file(db: Database, path: str) -> Dict[str, Any]:
    doc = db[FILES].find_one({"_id": path})
    if doc is None:
        raise NotFoundError(f"File {path} not found")
    return {
        "path": path,
        "content": bytes(doc["content"]),
        "content_type": doc.get("content_type", "application/octet-stream"),
        "size": doc.get("size", 0),
    }


def delete_file(db: Database, url_or_path: str) -> bool:
    path = url_or_path
    if path.startswith(FILES_URL_PREFIX):
        path = path[len(FILES_URL_PREFIX):]
    return db[FILES].delete_one({"_id": path}).deleted_count > 0

import re
import unicodedata
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from app_logger import get_logger
from cache import TTLCache
from database import as_utc, create_document, get_documents, now_utc, require_document, serialize_doc, update_document
from errors import ForbiddenError, InvalidRequestError, NotFoundError

logger = get_logger("blog")

POSTS = "blog"
COMMENTS = "blogComments"
CATEGORIES = "blogCategories"
TAGS = "blogTags"
RATINGS = "blogRatings"

DELETED_COMMENT_TEXT = "[Comment deleted]"

SORTS = {
    "recent": ("publish_date", -1),
    "oldest": ("publish_date", 1),
    "popular": ("view_count", -1),
}

_posts_cache = TTLCache(ttl=60)


def create_post(db: Database, data: Dict[str, Any], author_id: str) -> str:
    if db[POSTS].find_one({"slug": data["slug"]}):
        raise InvalidRequestError(f"A post with slug {data['slug']} already exists")
    doc = {**data, "author_id": data.get("author_id") or author_id, "view_count": 0}
    doc["publish_date"] = as_utc(doc.get("publish_date"))
    if doc.get("status") == "published" and not doc["publish_date"]:
        doc["publish_date"] = now_utc()
    post_id = create_document(db, POSTS, doc)
    for tag in doc.get("tags") or []:
        create_or_update_tag(db, tag)
    _posts_cache.clear()
    logger.info("Post %s created", post_id)
    return post_id


def update_post(db: Database, post_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    current = require_document(db, POSTS, post_id, "Post")
    if fields.get("publish_date"):
        fields = {**fields, "publish_date": as_utc(fields["publish_date"])}
    if fields.get("status") == "published" and not current.get("publish_date") and not fields.get("publish_date"):
        fields = {**fields, "publish_date": now_utc()}
    update_document(db, POSTS, post_id, fields)
    _posts_cache.clear()
    return require_document(db, POSTS, post_id, "Post")


def delete_post(db: Database, post_id: str) -> None:
    if db[POSTS].delete_one({"_id": post_id}).deleted_count == 0:
        raise NotFoundError(f"Post with ID {post_id} not found")
    db[COMMENTS].delete_many({"post_id": post_id})
    db[RATINGS].delete_many({"post_id": post_id})
    _posts_cache.clear()


def get_post_by_slug(db: Database, slug: str, count_view: bool = True) -> Dict[str, Any]:
    post = serialize_doc(db[POSTS].find_one({"slug": slug}))
    if post is None:
        raise NotFoundError(f"Post {slug} not found")
    if count_view:
        db[POSTS].update_one({"_id": post["id"]}, {"$inc": {"view_count": 1}})
        post["view_count"] = post.get("view_count", 0) + 1
    return post


def list_posts(
    db: Database,
    page: int = 1,
    page_size: int = 9,
    category_id: Optional[str] = None,
    tag: Optional[str] = None,
    sort: str = "recent",
) -> Dict[str, Any]:
    """Published posts, one page at a time. Results are cached for a minute."""
    if sort not in SORTS:
        raise InvalidRequestError(f"Unknown sort order: {sort}")
    page = max(page, 1)
    key = (page, page_size, category_id or "", tag or "", sort)

    def load():
        filt: Dict[str, Any] = {"status": "published"}
        if category_id:
            filt["categories"] = category_id
        if tag:
            filt["tags"] = tag
        posts = get_documents(db, POSTS, filt, sort=[SORTS[sort]])
        start = (page - 1) * page_size
        end = start + page_size
        return {"posts": posts[start:end], "has_more": end < len(posts), "total": len(posts)}

    return _posts_cache.get_or_set(key, load)


def list_posts_for_admin(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, POSTS, sort=[("created_at", -1)])


# --- Comments ---

def add_comment(db: Database, post_id: str, user: Dict[str, Any], content: str, parent_id: Optional[str] = None) -> str:
    require_document(db, POSTS, post_id, "Post")
    if not content or not content.strip():
        raise InvalidRequestError("Comment cannot be empty")
    name = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p) or user.get("email", "")
    return create_document(db, COMMENTS, {
        "post_id": post_id,
        "user_id": user["id"],
        "user_name": name,
        "content": content.strip(),
        "parent_id": parent_id,
        "is_approved": False,
        "is_deleted": False,
    })


def get_comments(db: Database, post_id: str, include_unapproved: bool = False) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {"post_id": post_id}
    if not include_unapproved:
        filt["is_approved"] = True
    return get_documents(db, COMMENTS, filt, sort=[("created_at", -1)])


def get_unapproved_comments(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, COMMENTS, {"is_approved": False, "is_deleted": False}, sort=[("created_at", -1)])


def approve_comment(db: Database, comment_id: str, admin_id: str) -> Dict[str, Any]:
    if not update_document(db, COMMENTS, comment_id, {"is_approved": True, "approved_by": admin_id, "approved_at": now_utc()}):
        raise NotFoundError(f"Comment with ID {comment_id} not found")
    return require_document(db, COMMENTS, comment_id, "Comment")


def delete_comment(db: Database, comment_id: str) -> Dict[str, Any]:
    # soft delete keeps reply threads intact
    if not update_document(db, COMMENTS, comment_id, {"content": DELETED_COMMENT_TEXT, "is_deleted": True}):
        raise NotFoundError(f"Comment with ID {comment_id} not found")
    return require_document(db, COMMENTS, comment_id, "Comment")


def edit_comment(db: Database, comment_id: str, user_id: str, content: str) -> Dict[str, Any]:
    comment = require_document(db, COMMENTS, comment_id, "Comment")
    if comment["user_id"] != user_id:
        raise ForbiddenError("Only the author can edit this comment")
    if comment.get("is_deleted"):
        raise InvalidRequestError("A deleted comment cannot be edited")
    if not content or not content.strip():
        raise InvalidRequestError("Comment cannot be empty")
    update_document(db, COMMENTS, comment_id, {"content": content.strip(), "is_edited": True})
    return require_document(db, COMMENTS, comment_id, "Comment")


def like_comment(db: Database, comment_id: str, user_id: str) -> Dict[str, Any]:
    """Add a like; liking twice counts once."""
    db[COMMENTS].update_one(
        {"_id": comment_id, "liked_by": {"$ne": user_id}},
        {"$addToSet": {"liked_by": user_id}, "$inc": {"likes": 1}},
    )
    return require_document(db, COMMENTS, comment_id, "Comment")


def unlike_comment(db: Database, comment_id: str, user_id: str) -> Dict[str, Any]:
    db[COMMENTS].update_one(
        {"_id": comment_id, "liked_by": user_id},
        {"$pull": {"liked_by": user_id}, "$inc": {"likes": -1}},
    )
    return require_document(db, COMMENTS, comment_id, "Comment")


# --- Categories and tags ---

def generate_slug(text: str) -> str:
    """Lowercase ASCII slug: 'Música en Vivo!' becomes 'musica-en-vivo'."""
    plain = unicodedata.normalize("NFD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", plain.lower()).strip("-")


def list_blog_categories(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, CATEGORIES, {"is_active": True}, sort=[("order", 1)])


def create_blog_category(db: Database, data: Dict[str, Any]) -> str:
    slug = data.get("slug") or generate_slug(data["name"])
    if db[CATEGORIES].find_one({"slug": slug}):
        raise InvalidRequestError(f"A blog category with slug {slug} already exists")
    return create_document(db, CATEGORIES, {"is_active": True, "order": 0, **data, "slug": slug})


def update_blog_category(db: Database, category_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    slug = fields.get("slug")
    if slug and db[CATEGORIES].find_one({"slug": slug, "_id": {"$ne": category_id}}):
        raise InvalidRequestError(f"A blog category with slug {slug} already exists")
    if not update_document(db, CATEGORIES, category_id, fields):
        raise NotFoundError(f"Blog category with ID {category_id} not found")
    _posts_cache.clear()
    return require_document(db, CATEGORIES, category_id, "Blog category")


def delete_blog_category(db: Database, category_id: str) -> None:
    """Delete a category and drop it from every post that referenced it."""
    if db[CATEGORIES].delete_one({"_id": category_id}).deleted_count == 0:
        raise NotFoundError(f"Blog category with ID {category_id} not found")
    result = db[POSTS].update_many({"categories": category_id}, {"$pull": {"categories": category_id}})
    _posts_cache.clear()
    logger.info("Blog category %s deleted (%d posts updated)", category_id, result.modified_count)


def list_tags(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, TAGS, sort=[("name", 1)])


def create_or_update_tag(db: Database, name: str) -> Dict[str, Any]:
    slug = generate_slug(name)
    if not slug:
        raise InvalidRequestError("Tag name is empty")
    existing = db[TAGS].find_one({"slug": slug})
    if existing:
        db[TAGS].update_one({"_id": existing["_id"]}, {"$inc": {"post_count": 1}, "$set": {"updated_at": now_utc()}})
        tag_id = existing["_id"]
    else:
        tag_id = create_document(db, TAGS, {"name": name.strip(), "slug": slug, "post_count": 1})
    return require_document(db, TAGS, tag_id, "Tag")


# --- Ratings ---

def rate_post(db: Database, post_id: str, user_id: str, rating: int, comment: Optional[str] = None) -> Dict[str, Any]:
    """One rating per user and post; rating again replaces the previous one."""
    if not 1 <= rating <= 5:
        raise InvalidRequestError("Rating must be between 1 and 5")
    require_document(db, POSTS, post_id, "Post")

    existing = db[RATINGS].find_one({"post_id": post_id, "user_id": user_id})
    fields = {"rating": rating, "comment": comment}
    if existing:
        update_document(db, RATINGS, existing["_id"], fields)
    else:
        create_document(db, RATINGS, {"post_id": post_id, "user_id": user_id, **fields})
    return update_post_rating(db, post_id)


def update_post_rating(db: Database, post_id: str) -> Dict[str, Any]:
    ratings = [r["rating"] for r in db[RATINGS].find({"post_id": post_id}, {"rating": 1})]
    summary = {
        "average_rating": round(sum(ratings) / len(ratings), 1) if ratings else 0.0,
        "rating_count": len(ratings),
    }
    if not update_document(db, POSTS, post_id, summary):
        raise NotFoundError(f"Post with ID {post_id} not found")
    _posts_cache.clear()
    return summary


def get_user_rating(db: Database, post_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    return serialize_doc(db[RATINGS].find_one({"post_id": post_id, "user_id": user_id}))

"""
Store catalog: products, variants, the category hierarchy, reviews and orders.

Categories keep a denormalized `subcategories` list of child ids on the parent
document; every write that moves a category between parents keeps that list
in step.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database

from app_logger import get_logger
from cache import TTLCache
from database import (
    create_document,
    get_documents,
    new_id,
    now_utc,
    require_document,
    serialize_doc,
    update_document,
)
from errors import InvalidRequestError, NotFoundError

logger = get_logger("store")

PRODUCTS = "products"
VARIANTS = "productVariants"
CATEGORIES = "productCategories"
REVIEWS = "productReviews"
ORDERS = "orders"

_category_cache = TTLCache(ttl=300)


# --- Products ---

def create_product(db: Database, data: Dict[str, Any]) -> str:
    if db[PRODUCTS].find_one({"slug": data["slug"]}):
        raise InvalidRequestError(f"A product with slug {data['slug']} already exists")
    require_document(db, CATEGORIES, data["category_id"], "Category")
    product_id = create_document(db, PRODUCTS, data)
    logger.info("Product %s created", product_id)
    return product_id


def _with_variants(db: Database, product: Dict[str, Any]) -> Dict[str, Any]:
    product["variants"] = get_documents(db, VARIANTS, {"product_id": product["id"]})
    return product


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    return _with_variants(db, require_document(db, PRODUCTS, product_id, "Product"))


def get_product_by_slug(db: Database, slug: str) -> Dict[str, Any]:
    product = serialize_doc(db[PRODUCTS].find_one({"slug": slug}))
    if product is None:
        raise NotFoundError(f"Product {slug} not found")
    return _with_variants(db, product)


def list_products(
    db: Database,
    category_id: Optional[str] = None,
    include_inactive: bool = False,
    featured: bool = False,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    filt: Dict[str, Any] = {}
    if not include_inactive:
        filt["is_active"] = True
    if category_id:
        filt["category_id"] = category_id
    if featured:
        filt["is_highlighted"] = True
    return get_documents(db, PRODUCTS, filt, sort=[("created_at", -1)], limit=limit)


def update_product(db: Database, product_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    slug = fields.get("slug")
    if slug and db[PRODUCTS].find_one({"slug": slug, "_id": {"$ne": product_id}}):
        raise InvalidRequestError(f"A product with slug {slug} already exists")
    if not update_document(db, PRODUCTS, product_id, fields):
        raise NotFoundError(f"Product with ID {product_id} not found")
    return get_product(db, product_id)


def delete_product(db: Database, product_id: str) -> None:
    if db[PRODUCTS].delete_one({"_id": product_id}).deleted_count == 0:
        raise NotFoundError(f"Product with ID {product_id} not found")
    db[VARIANTS].delete_many({"product_id": product_id})
    logger.info("Product %s deleted", product_id)


def add_variant(db: Database, product_id: str, data: Dict[str, Any]) -> str:
    require_document(db, PRODUCTS, product_id, "Product")
    variant_id = create_document(db, VARIANTS, {**data, "product_id": product_id})
    update_document(db, PRODUCTS, product_id, {"has_variants": True})
    return variant_id


def update_variant(db: Database, variant_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in fields.items() if k not in ("id", "_id", "product_id", "created_at")}
    if not update_document(db, VARIANTS, variant_id, fields):
        raise NotFoundError(f"Variant with ID {variant_id} not found")
    return require_document(db, VARIANTS, variant_id, "Variant")


def delete_variant(db: Database, variant_id: str) -> None:
    """Delete a variant; the product loses `has_variants` with its last one."""
    variant = require_document(db, VARIANTS, variant_id, "Variant")
    db[VARIANTS].delete_one({"_id": variant_id})
    product_id = variant["product_id"]
    if db[VARIANTS].count_documents({"product_id": product_id}) == 0:
        update_document(db, PRODUCTS, product_id, {"has_variants": False})
    logger.info("Variant %s of product %s deleted", variant_id, product_id)


# --- Categories ---

def _add_child(db: Database, parent_id: str, child_id: str) -> None:
    db[CATEGORIES].update_one(
        {"_id": parent_id},
        {"$addToSet": {"subcategories": child_id}, "$set": {"updated_at": now_utc()}},
    )


def _remove_child(db: Database, parent_id: str, child_id: str) -> None:
    db[CATEGORIES].update_one(
        {"_id": parent_id},
        {"$pull": {"subcategories": child_id}, "$set": {"updated_at": now_utc()}},
    )


def create_category(db: Database, data: Dict[str, Any]) -> str:
    if db[CATEGORIES].find_one({"slug": data["slug"]}):
        raise InvalidRequestError(f"A category with slug {data['slug']} already exists")
    parent_id = data.get("parent_category_id") if data.get("is_subcategory") else None
    if parent_id:
        require_document(db, CATEGORIES, parent_id, "Parent category")

    category_id = create_document(db, CATEGORIES, {**data, "subcategories": []})
    if parent_id:
        _add_child(db, parent_id, category_id)
    _category_cache.clear()
    return category_id


def update_category(db: Database, category_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    current = require_document(db, CATEGORIES, category_id, "Category")
    old_parent = current.get("parent_category_id") if current.get("is_subcategory") else None

    is_sub = fields.get("is_subcategory", current.get("is_subcategory", False))
    new_parent = fields.get("parent_category_id", current.get("parent_category_id")) if is_sub else None
    if new_parent == category_id:
        raise InvalidRequestError("A category cannot be its own parent")
    if new_parent:
        require_document(db, CATEGORIES, new_parent, "Parent category")

    if old_parent != new_parent:
        if old_parent:
            _remove_child(db, old_parent, category_id)
        if new_parent:
            _add_child(db, new_parent, category_id)
    if not is_sub:
        fields = {**fields, "parent_category_id": None}

    fields = {k: v for k, v in fields.items() if k != "subcategories"}
    update_document(db, CATEGORIES, category_id, fields)
    _category_cache.clear()
    return get_category(db, category_id)


def delete_category(db: Database, category_id: str) -> None:
    """Delete a category; its subcategories are promoted to top-level categories."""
    category = require_document(db, CATEGORIES, category_id, "Category")
    if category.get("is_subcategory") and category.get("parent_category_id"):
        _remove_child(db, category["parent_category_id"], category_id)

    children = category.get("subcategories") or []
    if children:
        db[CATEGORIES].update_many(
            {"_id": {"$in": children}},
            {"$set": {"is_subcategory": False, "parent_category_id": None, "updated_at": now_utc()}},
        )
    db[CATEGORIES].delete_one({"_id": category_id})
    _category_cache.clear()
    logger.info("Category %s deleted (%d subcategories promoted)", category_id, len(children))


def get_category(db: Database, category_id: str) -> Dict[str, Any]:
    return require_document(db, CATEGORIES, category_id, "Category")


def get_category_by_slug(db: Database, slug: str) -> Dict[str, Any]:
    category = serialize_doc(db[CATEGORIES].find_one({"slug": slug}))
    if category is None:
        raise NotFoundError(f"Category {slug} not found")
    return category


def list_categories(db: Database) -> List[Dict[str, Any]]:
    return _category_cache.get_or_set(
        "all", lambda: get_documents(db, CATEGORIES, sort=[("order", 1), ("name", 1)])
    )


# --- Reviews ---

def create_review(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    require_document(db, PRODUCTS, data["product_id"], "Product")
    review_id = create_document(db, REVIEWS, {**data, "approved": False})
    return require_document(db, REVIEWS, review_id, "Review")


def update_review(db: Database, review_id: str, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    review = require_document(db, REVIEWS, review_id, "Review")
    if review["user_id"] != user_id:
        raise NotFoundError(f"Review with ID {review_id} not found")
    # approval state is owned by admins
    fields = {k: v for k, v in fields.items() if k not in ("approved", "approved_by", "approved_at", "user_id", "product_id")}
    update_document(db, REVIEWS, review_id, fields)
    return require_document(db, REVIEWS, review_id, "Review")


def get_approved_reviews(db: Database, product_id: str) -> List[Dict[str, Any]]:
    return get_documents(db, REVIEWS, {"product_id": product_id, "approved": True}, sort=[("created_at", -1)])


def get_user_reviews(db: Database, user_id: str, product_id: str) -> List[Dict[str, Any]]:
    return get_documents(db, REVIEWS, {"product_id": product_id, "user_id": user_id}, sort=[("created_at", -1)])


def get_pending_reviews(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, REVIEWS, {"approved": False}, sort=[("created_at", -1)])


def approve_review(db: Database, review_id: str, admin_id: str) -> Dict[str, Any]:
    if not update_document(db, REVIEWS, review_id, {"approved": True, "approved_by": admin_id, "approved_at": now_utc()}):
        raise NotFoundError(f"Review with ID {review_id} not found")
    logger.info("Review %s approved by %s", review_id, admin_id)
    return require_document(db, REVIEWS, review_id, "Review")


def delete_review(db: Database, review_id: str) -> None:
    if db[REVIEWS].delete_one({"_id": review_id}).deleted_count == 0:
        raise NotFoundError(f"Review with ID {review_id} not found")


def get_product_rating(db: Database, product_id: str) -> Optional[Dict[str, Any]]:
    reviews = get_approved_reviews(db, product_id)
    if not reviews:
        return None
    average = sum(r["rating"] for r in reviews) / len(reviews)
    return {"rating_value": round(average, 1), "review_count": len(reviews)}


# --- Orders ---

def _stock_demand(order_items: List[Dict[str, Any]]) -> Tuple[Dict[str, int], Dict[Tuple[str, str], int]]:
    """Total quantity asked for per product and per (product, variant)."""
    per_product: Dict[str, int] = defaultdict(int)
    per_variant: Dict[Tuple[str, str], int] = defaultdict(int)
    for item in order_items:
        per_product[item["product_id"]] += item["quantity"]
        if item.get("variant_id"):
            per_variant[(item["product_id"], item["variant_id"])] += item["quantity"]
    return per_product, per_variant


def check_stock_availability(db: Database, order_items: List[Dict[str, Any]]) -> bool:
    per_product, per_variant = _stock_demand(order_items)

    for product_id, quantity in per_product.items():
        product = db[PRODUCTS].find_one({"_id": product_id})
        if product is None:
            logger.warning("Stock check: product %s not found", product_id)
            return False
        if product.get("stock", 0) < quantity:
            logger.warning("Stock check: not enough stock for product %s", product_id)
            return False

    for (product_id, variant_id), quantity in per_variant.items():
        variant = db[VARIANTS].find_one({"_id": variant_id, "product_id": product_id})
        if variant is None or variant.get("stock", 0) < quantity:
            logger.warning("Stock check: not enough stock for variant %s", variant_id)
            return False
    return True


def reserve_stock(db: Database, order_items: List[Dict[str, Any]]) -> None:
    """
    Take the stock for an order.

    Each decrement only applies while enough stock is left, so concurrent
    orders cannot drive a product or variant below zero. When one decrement
    fails the ones already applied are given back.
    """
    per_product, per_variant = _stock_demand(order_items)
    targets = [(PRODUCTS, product_id, quantity) for product_id, quantity in per_product.items()]
    targets += [(VARIANTS, variant_id, quantity) for (_, variant_id), quantity in per_variant.items()]

    taken = []
    for collection, doc_id, quantity in targets:
        result = db[collection].update_one(
            {"_id": doc_id, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": now_utc()}},
        )
        if result.modified_count == 0:
            for done_collection, done_id, done_quantity in taken:
                db[done_collection].update_one({"_id": done_id}, {"$inc": {"stock": done_quantity}})
            logger.warning("Stock reservation failed on %s %s", collection, doc_id)
            raise InvalidRequestError("Not enough stock for one or more products")
        taken.append((collection, doc_id, quantity))


def release_stock(db: Database, order_items: List[Dict[str, Any]]) -> None:
    per_product, per_variant = _stock_demand(order_items)
    for product_id, quantity in per_product.items():
        db[PRODUCTS].update_one({"_id": product_id}, {"$inc": {"stock": quantity}})
    for (_, variant_id), quantity in per_variant.items():
        db[VARIANTS].update_one({"_id": variant_id}, {"$inc": {"stock": quantity}})


def create_order(db: Database, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Price the cart from the catalog, check stock, store the order and take the stock."""
    items = []
    currency = None
    for line in data["order_items"]:
        product = require_document(db, PRODUCTS, line["product_id"], "Product")
        if not product.get("is_active", True):
            raise InvalidRequestError(f"Product {product['name']} is not available")
        unit = float(product["price"])
        if line.get("variant_id"):
            variant = require_document(db, VARIANTS, line["variant_id"], "Variant")
            unit += float(variant.get("additional_price", 0))
        if product.get("discount_percentage"):
            unit = unit * (100 - product["discount_percentage"]) / 100
        unit = round(unit, 2)
        currency = currency or product.get("currency", "USD")
        items.append({
            "id": new_id(),
            "product_id": product["id"],
            "variant_id": line.get("variant_id"),
            "quantity": line["quantity"],
            "price_per_unit": unit,
            "currency": currency,
            "subtotal": round(unit * line["quantity"], 2),
        })

    if not items:
        raise InvalidRequestError("An order needs at least one item")
    if not check_stock_availability(db, items):
        raise InvalidRequestError("Not enough stock for one or more products")

    shipping_cost = float(data.get("shipping_cost") or 0)
    payment_method = data.get("payment_method", "offline")
    if payment_method == "offline" and not data.get("payment_proof_url"):
        raise InvalidRequestError("A payment proof is required for offline payments")

    order = {
        "user_id": user_id,
        "order_items": items,
        "total_amount": round(sum(i["subtotal"] for i in items) + shipping_cost, 2),
        "currency": currency,
        "shipping_cost": shipping_cost,
        "shipping_address": data["shipping_address"],
        "payment_method": payment_method,
        "offline_payment_method": data.get("offline_payment_method"),
        "payment_proof_url": data.get("payment_proof_url"),
        "notes": data.get("notes"),
        "status": "pending",
        "payment_status": "pending",
    }
    reserve_stock(db, items)
    try:
        order_id = create_document(db, ORDERS, order)
    except Exception:
        release_stock(db, items)
        raise
    logger.info("Order %s created for user %s", order_id, user_id)
    return get_order(db, order_id)


def get_order(db: Database, order_id: str) -> Dict[str, Any]:
    return require_document(db, ORDERS, order_id, "Order")


def get_user_orders(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return get_documents(db, ORDERS, {"user_id": user_id}, sort=[("created_at", -1)])


def list_orders(db: Database, payment_status: Optional[str] = None) -> List[Dict[str, Any]]:
    filt = {"payment_status": payment_status} if payment_status else {}
    return get_documents(db, ORDERS, filt, sort=[("created_at", -1)])


def update_order_status(
    db: Database,
    order_id: str,
    status: str,
    admin_id: Optional[str] = None,
    notes: Optional[str] = None,
    tracking_number: Optional[str] = None,
    expected_delivery_date=None,
) -> Dict[str, Any]:
    fields: Dict[str, Any] = {"status": status}
    if admin_id:
        fields.update(reviewed_by=admin_id, reviewed_at=now_utc())
    if notes:
        fields["notes"] = notes
    if tracking_number:
        fields["tracking_number"] = tracking_number
    if expected_delivery_date:
        fields["expected_delivery_date"] = expected_delivery_date
    if not update_document(db, ORDERS, order_id, fields):
        raise NotFoundError(f"Order with ID {order_id} not found")
    return get_order(db, order_id)


def update_order_payment_status(db: Database, order_id: str, payment_status: str, admin_id: Optional[str] = None) -> Dict[str, Any]:
    fields: Dict[str, Any] = {"payment_status": payment_status}
    if admin_id:
        fields.update(reviewed_by=admin_id, reviewed_at=now_utc())
    if not update_document(db, ORDERS, order_id, fields):
        raise NotFoundError(f"Order with ID {order_id} not found")
    logger.info("Order %s payment %s", order_id, payment_status)
    return get_order(db, order_id)


def submit_order_payment_proof(db: Database, order_id: str, payment_proof_url: str) -> Dict[str, Any]:
    if not update_document(db, ORDERS, order_id, {"payment_proof_url": payment_proof_url, "payment_status": "pending"}):
        raise NotFoundError(f"Order with ID {order_id} not found")
    return get_order(db, order_id)

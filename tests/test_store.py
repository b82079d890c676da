import pytest

import store
from errors import InvalidRequestError, NotFoundError

ADDRESS = {
    "full_name": "Ana Quispe",
    "address_line1": "Av. Larco 123",
    "city": "Lima",
    "country": "PE",
}


@pytest.fixture
def category(db):
    return store.create_category(db, {"name": "Ropa", "slug": "ropa"})


@pytest.fixture
def product(db, category):
    return store.create_product(db, {
        "name": "Polo oficial",
        "slug": "polo-oficial",
        "category_id": category,
        "price": 20.0,
        "currency": "USD",
        "stock": 5,
        "is_active": True,
    })


def test_subcategory_is_listed_on_parent(db, category):
    child = store.create_category(db, {"name": "Polos", "slug": "polos", "is_subcategory": True, "parent_category_id": category})
    assert store.get_category(db, category)["subcategories"] == [child]


def test_moving_a_subcategory_updates_both_parents(db, category):
    other = store.create_category(db, {"name": "Accesorios", "slug": "accesorios"})
    child = store.create_category(db, {"name": "Gorras", "slug": "gorras", "is_subcategory": True, "parent_category_id": category})

    store.update_category(db, child, {"parent_category_id": other})
    assert store.get_category(db, category)["subcategories"] == []
    assert store.get_category(db, other)["subcategories"] == [child]

    demoted = store.update_category(db, child, {"is_subcategory": False})
    assert demoted["parent_category_id"] is None
    assert store.get_category(db, other)["subcategories"] == []


def test_category_cannot_be_its_own_parent(db, category):
    with pytest.raises(InvalidRequestError):
        store.update_category(db, category, {"is_subcategory": True, "parent_category_id": category})


def test_deleting_parent_promotes_children(db, category):
    a = store.create_category(db, {"name": "A", "slug": "a", "is_subcategory": True, "parent_category_id": category})
    b = store.create_category(db, {"name": "B", "slug": "b", "is_subcategory": True, "parent_category_id": category})

    store.delete_category(db, category)
    for child_id in (a, b):
        child = store.get_category(db, child_id)
        assert child["is_subcategory"] is False
        assert child["parent_category_id"] is None
    with pytest.raises(NotFoundError):
        store.get_category(db, category)


def test_category_list_is_refreshed_after_writes(db, category):
    assert [c["slug"] for c in store.list_categories(db)] == ["ropa"]
    store.create_category(db, {"name": "Zapatos", "slug": "zapatos"})
    assert [c["slug"] for c in store.list_categories(db)] == ["ropa", "zapatos"]


def test_duplicate_slugs_are_refused(db, category, product):
    with pytest.raises(InvalidRequestError):
        store.create_category(db, {"name": "Ropa 2", "slug": "ropa"})
    with pytest.raises(InvalidRequestError):
        store.create_product(db, {"name": "Polo", "slug": "polo-oficial", "category_id": category, "price": 1})


def test_product_lookup_includes_variants(db, product):
    store.add_variant(db, product, {"type": "size", "name": "M", "stock": 2, "additional_price": 5})
    by_slug = store.get_product_by_slug(db, "polo-oficial")
    assert by_slug["has_variants"] is True
    assert [v["name"] for v in by_slug["variants"]] == ["M"]


def test_delete_product_removes_variants(db, product):
    store.add_variant(db, product, {"type": "size", "name": "L", "stock": 1})
    store.delete_product(db, product)
    assert db["productVariants"].count_documents({"product_id": product}) == 0
    with pytest.raises(NotFoundError):
        store.get_product(db, product)


def test_inactive_products_are_hidden(db, category, product):
    store.update_product(db, product, {"is_active": False})
    assert store.list_products(db) == []
    assert len(store.list_products(db, include_inactive=True)) == 1


def test_reviews_start_unapproved_and_keep_approval_on_edit(db, admin, user, product):
    review = store.create_review(db, {"product_id": product, "user_id": user["id"], "user_name": "Ana", "rating": 4, "approved": True})
    assert review["approved"] is False
    assert store.get_approved_reviews(db, product) == []
    assert [r["id"] for r in store.get_pending_reviews(db)] == [review["id"]]

    store.approve_review(db, review["id"], admin["id"])
    edited = store.update_review(db, review["id"], user["id"], {"rating": 5, "approved": False})
    assert edited["rating"] == 5
    assert edited["approved"] is True


def test_only_the_author_edits_a_review(db, user, other_user, product):
    review = store.create_review(db, {"product_id": product, "user_id": user["id"], "user_name": "Ana", "rating": 4})
    with pytest.raises(NotFoundError):
        store.update_review(db, review["id"], other_user["id"], {"rating": 1})


def test_product_rating_uses_approved_reviews(db, admin, user, other_user, product):
    assert store.get_product_rating(db, product) is None
    for author, rating in ((user, 5), (other_user, 4)):
        review = store.create_review(db, {"product_id": product, "user_id": author["id"], "user_name": "x", "rating": rating})
        store.approve_review(db, review["id"], admin["id"])
    store.create_review(db, {"product_id": product, "user_id": user["id"], "user_name": "x", "rating": 1})

    assert store.get_product_rating(db, product) == {"rating_value": 4.5, "review_count": 2}


def test_order_prices_from_catalog_and_takes_stock(db, user, product):
    variant = store.add_variant(db, product, {"type": "size", "name": "M", "stock": 3, "additional_price": 5})
    store.update_product(db, product, {"discount_percentage": 10})

    order = store.create_order(db, user["id"], {
        "order_items": [{"product_id": product, "variant_id": variant, "quantity": 2}],
        "shipping_address": ADDRESS,
        "shipping_cost": 8,
        "payment_method": "offline",
        "offline_payment_method": "plin",
        "payment_proof_url": "/api/files/payment-proofs/x.jpg",
    })
    assert order["order_items"][0]["price_per_unit"] == 22.5
    assert order["total_amount"] == 53.0
    assert order["status"] == "pending"
    assert db["products"].find_one({"_id": product})["stock"] == 3
    assert db["productVariants"].find_one({"_id": variant})["stock"] == 1


def test_order_refused_when_stock_runs_out(db, user, product):
    order = {
        "order_items": [{"product_id": product, "quantity": 3}, {"product_id": product, "quantity": 3}],
        "shipping_address": ADDRESS,
        "payment_method": "online",
    }
    with pytest.raises(InvalidRequestError):
        store.create_order(db, user["id"], order)
    assert db["products"].find_one({"_id": product})["stock"] == 5
    assert db["orders"].count_documents({}) == 0


def test_variant_stock_is_summed_across_order_lines(db, user, product):
    variant = store.add_variant(db, product, {"type": "size", "name": "M", "stock": 5})
    store.update_product(db, product, {"stock": 10})
    order = {
        "order_items": [
            {"product_id": product, "variant_id": variant, "quantity": 3},
            {"product_id": product, "variant_id": variant, "quantity": 3},
        ],
        "shipping_address": ADDRESS,
        "payment_method": "online",
    }
    with pytest.raises(InvalidRequestError):
        store.create_order(db, user["id"], order)
    assert db["productVariants"].find_one({"_id": variant})["stock"] == 5
    assert db["products"].find_one({"_id": product})["stock"] == 10
    assert db["orders"].count_documents({}) == 0


def test_failed_reservation_gives_back_taken_stock(db, product):
    variant = store.add_variant(db, product, {"type": "size", "name": "S", "stock": 1})
    with pytest.raises(InvalidRequestError):
        store.reserve_stock(db, [{"product_id": product, "variant_id": variant, "quantity": 2}])
    assert db["products"].find_one({"_id": product})["stock"] == 5
    assert db["productVariants"].find_one({"_id": variant})["stock"] == 1


def test_update_and_delete_variant(db, product):
    first = store.add_variant(db, product, {"type": "size", "name": "M", "stock": 2})
    second = store.add_variant(db, product, {"type": "color", "name": "Rojo", "stock": 1})

    updated = store.update_variant(db, first, {"stock": 7, "product_id": "other"})
    assert updated["stock"] == 7
    assert updated["product_id"] == product

    store.delete_variant(db, first)
    assert store.get_product(db, product)["has_variants"] is True
    store.delete_variant(db, second)
    assert store.get_product(db, product)["has_variants"] is False

    with pytest.raises(NotFoundError):
        store.delete_variant(db, first)
    with pytest.raises(NotFoundError):
        store.update_variant(db, "missing", {"stock": 1})


def test_offline_order_requires_proof(db, user, product):
    with pytest.raises(InvalidRequestError):
        store.create_order(db, user["id"], {
            "order_items": [{"product_id": product, "quantity": 1}],
            "shipping_address": ADDRESS,
            "payment_method": "offline",
        })


def test_order_status_updates_record_reviewer(db, admin, user, product):
    order = store.create_order(db, user["id"], {
        "order_items": [{"product_id": product, "quantity": 1}],
        "shipping_address": ADDRESS,
        "payment_method": "online",
    })
    paid = store.update_order_payment_status(db, order["id"], "approved", admin["id"])
    assert paid["payment_status"] == "approved"
    assert paid["reviewed_by"] == admin["id"]

    shipped = store.update_order_status(db, order["id"], "shipping", admin["id"], tracking_number="OLVA-1")
    assert shipped["status"] == "shipping"
    assert shipped["tracking_number"] == "OLVA-1"
    assert [o["id"] for o in store.get_user_orders(db, user["id"])] == [order["id"]]
    assert store.list_orders(db, payment_status="pending") == []

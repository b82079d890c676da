from datetime import datetime, timedelta, timezone


def as_user(u):
    return {"X-User-Id": u["id"]}


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "message" in r.json()


def test_schema_lists_collections(client):
    body = client.get("/schema").json()
    assert {"ticketTransactions", "paymentInstallments", "products", "blog", "users"} <= set(body)


def test_missing_or_unknown_user_is_401(client):
    assert client.get("/api/users/me").status_code == 401
    assert client.get("/api/users/me", headers={"X-User-Id": "ghost"}).status_code == 401


def test_disabled_user_is_403(client, db, user):
    db["users"].update_one({"_id": user["id"]}, {"$set": {"is_active": False}})
    assert client.get("/api/users/me", headers=as_user(user)).status_code == 403


def test_admin_routes_refuse_regular_users(client, user):
    assert client.get("/api/admin/tickets/pending", headers=as_user(user)).status_code == 403
    assert client.get("/api/admin/users", headers=as_user(user)).status_code == 403


def test_sign_up_and_profile(client):
    headers = {"X-User-Id": "new-user"}
    r = client.post("/api/users", json={"email": "New@Example.com", "first_name": "Nuevo"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["email"] == "new@example.com"

    r = client.patch("/api/users/me", json={"country": "PE"}, headers=headers)
    assert r.json()["country"] == "PE"
    assert client.post("/api/users", json={"email": "bad"}, headers={"X-User-Id": "x"}).status_code == 400


def test_admin_promotes_user(client, admin, user):
    r = client.patch(f"/api/admin/users/{user['id']}", json={"role": "admin"}, headers=as_user(admin))
    assert r.status_code == 200
    assert r.json()["role"] == "admin"


def test_event_crud(client, admin):
    payload = {
        "name": "Concierto",
        "slug": "concierto",
        "currency": "PEN",
        "zones": [{"id": "z1", "name": "Campo"}],
        "sales_phases": [{"id": "p1", "name": "General", "zones_pricing": [{"zone_id": "z1", "price": 80}]}],
    }
    r = client.post("/api/events", json=payload, headers=as_user(admin))
    assert r.status_code == 200
    event_id = r.json()["id"]

    assert client.post("/api/events", json=payload, headers=as_user(admin)).status_code == 400
    assert client.get("/api/events/slug/concierto").json()["id"] == event_id
    r = client.patch(f"/api/events/{event_id}", json={"status": "published"}, headers=as_user(admin))
    assert r.json()["status"] == "published"
    assert [e["id"] for e in client.get("/api/events", params={"status": "published"}).json()] == [event_id]
    assert client.get("/api/events/missing").status_code == 404


def test_ticket_purchase_review_and_download_flow(client, admin, user, purchase_request):
    r = client.post("/api/tickets/purchase", json=purchase_request(quantity=2), headers=as_user(user))
    assert r.status_code == 200
    tx = r.json()
    ticket_id = tx["ticket_items"][0]["id"]

    pending = client.get("/api/admin/tickets/pending", headers=as_user(admin)).json()
    assert [p["id"] for p in pending] == [tx["id"]]
    assert pending[0]["user"]["email"] == "ana@example.com"

    yesterday = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    r = client.post(
        f"/api/admin/tickets/transactions/{tx['id']}/approve",
        json={"tickets_download_available_date": yesterday, "ticket_pdf_urls": ["/api/files/tickets/1.pdf"]},
        headers=as_user(admin),
    )
    assert r.status_code == 200
    assert r.json()["payment_status"] == "approved"

    download = client.get(f"/api/tickets/transactions/{tx['id']}/tickets/{ticket_id}/download", headers=as_user(user)).json()
    assert download["downloadable"] is True

    second = tx["ticket_items"][1]["id"]
    download = client.get(f"/api/tickets/transactions/{tx['id']}/tickets/{second}/download", headers=as_user(user)).json()
    assert download["downloadable"] is False

    r = client.post(
        f"/api/tickets/{ticket_id}/nominate",
        json={"transaction_id": tx["id"], "nominee_first_name": "Rosa", "nominee_last_name": "Mamani",
              "nominee_doc_type": "DNI", "nominee_doc_number": "12345678"},
        headers=as_user(user),
    )
    assert r.status_code == 200
    assert r.json()["is_nominated"] is True

    assert client.post(f"/api/checkin/{tx['id']}/{ticket_id}", headers=as_user(admin)).json()["status"] == "checked_in"
    assert client.post(f"/api/checkin/{tx['id']}/{ticket_id}", headers=as_user(admin)).json()["status"] == "already_checked_in"


def test_nomination_without_transaction_is_400(client, user):
    r = client.post(
        "/api/tickets/t-1/nominate",
        json={"nominee_first_name": "Rosa", "nominee_last_name": "Mamani", "nominee_doc_type": "DNI", "nominee_doc_number": "1"},
        headers=as_user(user),
    )
    assert r.status_code == 400
    assert "transaction_id" in r.json()["detail"]


def test_other_users_cannot_see_a_transaction(client, user, other_user, purchase_request):
    tx = client.post("/api/tickets/purchase", json=purchase_request(), headers=as_user(user)).json()
    assert client.get(f"/api/tickets/transactions/{tx['id']}", headers=as_user(other_user)).status_code == 404
    assert client.get("/api/tickets/mine", headers=as_user(other_user)).json() == []


def test_installment_payment_flow(client, admin, user, purchase_request):
    body = purchase_request(payment_type="installment", number_of_installments=2, installment_frequency="monthly")
    tx = client.post("/api/tickets/purchase", json=body, headers=as_user(user)).json()
    second = tx["installments"][1]["id"]

    r = client.post(f"/api/installments/{second}/payment", json={"payment_proof_url": "/api/files/p.jpg"}, headers=as_user(user))
    assert r.status_code == 200
    pending = client.get("/api/admin/installments/pending", headers=as_user(admin)).json()
    assert [p["id"] for p in pending] == [second]

    r = client.post(f"/api/admin/installments/{second}/approve", headers=as_user(admin))
    assert r.json()["status"] == "paid"


def test_reject_transaction_over_http(client, admin, user, purchase_request):
    tx = client.post("/api/tickets/purchase", json=purchase_request(), headers=as_user(user)).json()
    r = client.post(f"/api/admin/tickets/transactions/{tx['id']}/reject", json={"admin_notes": "no"}, headers=as_user(admin))
    assert {t["status"] for t in r.json()["ticket_items"]} == {"cancelled"}


def test_assign_courtesy_over_http(client, admin, user, event):
    r = client.post(
        "/api/admin/tickets/assign",
        json={"user_id": user["id"], "event_id": event["id"], "zone_id": "vip", "quantity": 1, "is_courtesy": True},
        headers=as_user(admin),
    )
    assert r.status_code == 200
    assert r.json()["payment_status"] == "approved"
    assert [t["id"] for t in client.get("/api/tickets/mine", headers=as_user(user)).json()] == [r.json()["id"]]


def test_upload_and_download_file(client, user):
    r = client.post(
        "/api/uploads/payment-proofs",
        files={"file": ("voucher.jpg", b"jpeg-bytes", "image/jpeg")},
        headers=as_user(user),
    )
    assert r.status_code == 200
    url = r.json()["url"]
    assert url.startswith("/api/files/payment-proofs/")

    r = client.get(url)
    assert r.status_code == 200
    assert r.content == b"jpeg-bytes"
    assert r.headers["content-type"].startswith("image/jpeg")


def test_only_admins_upload_ticket_pdfs(client, user):
    r = client.post("/api/uploads/ticket-pdfs", files={"file": ("t.pdf", b"%PDF", "application/pdf")}, headers=as_user(user))
    assert r.status_code == 403


def test_store_and_review_flow(client, admin, user):
    category = client.post("/api/categories", json={"name": "Ropa", "slug": "ropa"}, headers=as_user(admin)).json()
    product = client.post(
        "/api/products",
        json={"name": "Polo", "slug": "polo", "category_id": category["id"], "price": 25, "stock": 2},
        headers=as_user(admin),
    ).json()

    r = client.post(f"/api/products/{product['id']}/reviews", json={"rating": 5, "comment": "Top"}, headers=as_user(user))
    review_id = r.json()["id"]
    assert client.get(f"/api/products/{product['id']}/reviews").json() == []
    client.post(f"/api/admin/reviews/{review_id}/approve", headers=as_user(admin))
    assert client.get(f"/api/products/{product['id']}/rating").json() == {"rating_value": 5.0, "review_count": 1}
    assert client.get("/api/products/slug/polo").json()["rating"]["review_count"] == 1

    order = {
        "order_items": [{"product_id": product["id"], "quantity": 3}],
        "shipping_address": {"full_name": "Ana", "address_line1": "Calle 1", "city": "Lima", "country": "PE"},
        "payment_method": "online",
    }
    assert client.post("/api/orders", json=order, headers=as_user(user)).status_code == 400
    order["order_items"][0]["quantity"] = 2
    r = client.post("/api/orders", json=order, headers=as_user(user))
    assert r.status_code == 200
    assert r.json()["total_amount"] == 50.0


def test_blog_over_http(client, admin, user):
    r = client.post("/api/blog", json={"title": "Hola", "slug": "hola", "status": "published"}, headers=as_user(admin))
    post_id = r.json()["id"]
    assert [p["slug"] for p in client.get("/api/blog").json()["posts"]] == ["hola"]
    assert client.get("/api/blog/hola").json()["view_count"] == 1

    r = client.post(f"/api/blog/{post_id}/comments", json={"content": "Genial"}, headers=as_user(user))
    comment_id = r.json()["id"]
    assert client.get(f"/api/blog/{post_id}/comments").json() == []
    client.post(f"/api/admin/comments/{comment_id}/approve", headers=as_user(admin))
    assert len(client.get(f"/api/blog/{post_id}/comments").json()) == 1


def test_exchange_rates_and_convert(client, admin):
    client.put("/api/admin/exchange-rates", json={"rates": {"PEN": 3.75}}, headers=as_user(admin))
    assert client.get("/api/exchange-rates").json() == {"base": "USD", "rates": {"PEN": 3.75}}
    r = client.get("/api/convert", params={"amount": 10, "from_currency": "USD", "to_currency": "PEN"})
    assert r.json()["result"] == 37.5


def test_featured_country_and_delete_events(client, admin):
    soon = (datetime.now(timezone.utc) + timedelta(days=10)).isoformat()
    base = {"currency": "PEN", "status": "published", "start_date": soon, "country": "PE"}
    highlighted = client.post("/api/events", json={**base, "name": "A", "slug": "a", "is_highlighted": True}, headers=as_user(admin)).json()
    plain = client.post("/api/events", json={**base, "name": "B", "slug": "b"}, headers=as_user(admin)).json()

    assert [e["id"] for e in client.get("/api/events/featured").json()] == [highlighted["id"]]
    assert {e["id"] for e in client.get("/api/events/country/PE").json()} == {highlighted["id"], plain["id"]}

    assert client.delete(f"/api/events/{plain['id']}", headers=as_user(admin)).json() == {"deleted": True}
    assert client.get(f"/api/events/{plain['id']}").status_code == 404
    assert client.delete(f"/api/events/{plain['id']}", headers=as_user(admin)).status_code == 404


def test_sold_out_zone_over_http(client, db, user, event, purchase_request):
    phases = event["sales_phases"]
    phases[0]["zones_pricing"][0]["sold"] = phases[0]["zones_pricing"][0]["available"]
    db["events"].update_one({"_id": event["id"]}, {"$set": {"sales_phases": phases}})
    r = client.post("/api/tickets/purchase", json=purchase_request(quantity=1), headers=as_user(user))
    assert r.status_code == 400
    assert "sold out" in r.json()["detail"]


def test_approving_a_rejected_transaction_is_400(client, admin, user, purchase_request):
    tx = client.post("/api/tickets/purchase", json=purchase_request(), headers=as_user(user)).json()
    client.post(f"/api/admin/tickets/transactions/{tx['id']}/reject", json={}, headers=as_user(admin))
    r = client.post(
        f"/api/admin/tickets/transactions/{tx['id']}/approve",
        json={"tickets_download_available_date": datetime.now(timezone.utc).isoformat()},
        headers=as_user(admin),
    )
    assert r.status_code == 400


def test_variant_update_and_delete_over_http(client, admin):
    category = client.post("/api/categories", json={"name": "Gorras", "slug": "gorras"}, headers=as_user(admin)).json()
    product = client.post(
        "/api/products",
        json={"name": "Gorra", "slug": "gorra", "category_id": category["id"], "price": 15, "stock": 4},
        headers=as_user(admin),
    ).json()
    variant = client.post(f"/api/products/{product['id']}/variants", json={"type": "color", "name": "Negro", "stock": 2}, headers=as_user(admin)).json()

    r = client.patch(f"/api/variants/{variant['id']}", json={"stock": 9}, headers=as_user(admin))
    assert r.json()["stock"] == 9
    assert client.delete(f"/api/variants/{variant['id']}", headers=as_user(admin)).json() == {"deleted": True}
    assert client.get(f"/api/products/{product['id']}").json()["has_variants"] is False


def test_blog_categories_tags_ratings_and_comment_actions(client, admin, user, other_user):
    category = client.post("/api/blog/categories", json={"name": "Noticias"}, headers=as_user(admin)).json()
    assert [c["slug"] for c in client.get("/api/blog/categories").json()] == ["noticias"]
    client.post("/api/blog/tags", json={"name": "Rock"}, headers=as_user(admin))
    assert [t["slug"] for t in client.get("/api/blog/tags").json()] == ["rock"]

    post_id = client.post(
        "/api/blog",
        json={"title": "Hola", "slug": "hola", "status": "published", "categories": [category["id"]]},
        headers=as_user(admin),
    ).json()["id"]
    r = client.post(f"/api/blog/{post_id}/rating", json={"rating": 4}, headers=as_user(user))
    assert r.json() == {"average_rating": 4.0, "rating_count": 1}
    assert client.get(f"/api/blog/{post_id}/rating/mine", headers=as_user(user)).json()["rating"] == 4

    comment_id = client.post(f"/api/blog/{post_id}/comments", json={"content": "Genial"}, headers=as_user(user)).json()["id"]
    assert client.patch(f"/api/comments/{comment_id}", json={"content": "x"}, headers=as_user(other_user)).status_code == 403
    assert client.patch(f"/api/comments/{comment_id}", json={"content": "Genial!"}, headers=as_user(user)).json()["is_edited"] is True
    assert client.post(f"/api/comments/{comment_id}/like", headers=as_user(other_user)).json()["likes"] == 1
    assert client.delete(f"/api/comments/{comment_id}/like", headers=as_user(other_user)).json()["likes"] == 0

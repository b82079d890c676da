from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.database import Database

import blog
import contact
import currency
import events
import installments
import store
import storage
import tickets
import users
from app_logger import get_logger
from config import get_settings
from database import db, get_db
from errors import ServiceError
from schemas import COLLECTIONS, Address, InstallmentFrequency, OfflinePaymentMethod, PaymentMethod, PaymentType, SalesPhase, Zone

logger = get_logger("api")
settings = get_settings()

app = FastAPI(title="Event Ticketing & Store API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.warning("%s %s refused: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/")
def read_root():
    return {"message": "Event Ticketing & Store Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
            response["database_name"] = db.name if hasattr(db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"

    return response


# Schemas for requests
class ContactIn(BaseModel):
    name: str = ""
    email: str = ""
    message: str = ""


class UserIn(BaseModel):
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    phone_prefix: str = ""
    country: str = ""
    document_type: str = ""
    document_number: str = ""
    auth_provider: Literal["email", "google", "facebook", "apple"] = "email"
    preferred_currency: str = "USD"


class ProfileUpdateIn(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    phone_prefix: Optional[str] = None
    country: Optional[str] = None
    document_type: Optional[str] = None
    document_number: Optional[str] = None
    preferred_currency: Optional[str] = None
    avatar: Optional[str] = None


class AdminUserUpdateIn(ProfileUpdateIn):
    role: Optional[Literal["user", "admin"]] = None
    is_active: Optional[bool] = None


class EventIn(BaseModel):
    name: str
    slug: str
    short_description: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    venue: Optional[str] = None
    country: Optional[str] = None
    currency: str = "USD"
    status: Literal["draft", "published", "cancelled", "completed"] = "draft"
    zones: List[Zone] = Field(default_factory=list)
    sales_phases: List[SalesPhase] = Field(default_factory=list)
    sell_tickets_on_platform: bool = True
    external_ticket_url: Optional[str] = None
    allow_offline_payments: bool = True
    allow_installment_payments: bool = False
    is_highlighted: bool = False


class EventUpdateIn(BaseModel):
    name: Optional[str] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    venue: Optional[str] = None
    country: Optional[str] = None
    status: Optional[Literal["draft", "published", "cancelled", "completed"]] = None
    zones: Optional[List[Zone]] = None
    sales_phases: Optional[List[SalesPhase]] = None
    sell_tickets_on_platform: Optional[bool] = None
    external_ticket_url: Optional[str] = None
    allow_offline_payments: Optional[bool] = None
    allow_installment_payments: Optional[bool] = None
    is_highlighted: Optional[bool] = None


class PurchaseIn(BaseModel):
    event_id: str
    phase_id: str
    zone_id: str
    quantity: int = Field(..., ge=1)
    payment_method: PaymentMethod = "offline"
    offline_payment_method: Optional[OfflinePaymentMethod] = None
    payment_proof_url: Optional[str] = None
    payment_type: PaymentType = "full"
    number_of_installments: Optional[int] = None
    installment_frequency: Optional[InstallmentFrequency] = None


class NominationIn(BaseModel):
    transaction_id: Optional[str] = None
    nominee_first_name: str
    nominee_last_name: str
    nominee_doc_type: str
    nominee_doc_number: str


class ApproveTransactionIn(BaseModel):
    tickets_download_available_date: datetime
    admin_notes: str = ""
    ticket_pdf_urls: List[str] = Field(default_factory=list)


class RejectIn(BaseModel):
    admin_notes: str = ""


class DownloadDateIn(BaseModel):
    tickets_download_available_date: datetime


class TicketPdfIn(BaseModel):
    ticket_pdf_url: str


class TransactionUpdateIn(BaseModel):
    admin_notes: Optional[str] = None
    payment_proof_url: Optional[str] = None
    offline_payment_method: Optional[OfflinePaymentMethod] = None
    tickets_download_available_date: Optional[datetime] = None
    is_courtesy: Optional[bool] = None


class AssignTicketsIn(BaseModel):
    user_id: str
    event_id: str
    zone_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(0, ge=0)
    is_courtesy: bool = False
    payment_type: PaymentType = "full"
    number_of_installments: Optional[int] = Field(None, ge=2, le=12)
    installment_frequency: Optional[InstallmentFrequency] = None
    payment_proof_url: Optional[str] = None
    tickets_download_available_date: Optional[datetime] = None
    ticket_pdf_urls: List[str] = Field(default_factory=list)


class PaymentProofIn(BaseModel):
    payment_proof_url: str


class InstallmentRejectIn(BaseModel):
    notes: str = ""


class ProductIn(BaseModel):
    name: str
    slug: str
    short_description: str = ""
    description: str = ""
    category_id: str
    price: float = Field(..., ge=0)
    currency: str = "USD"
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    stock: int = Field(0, ge=0)
    images: List[str] = Field(default_factory=list)
    gender: Literal["male", "female", "unisex"] = "unisex"
    is_active: bool = True
    is_highlighted: bool = False
    sku: Optional[str] = None
    brand: Optional[str] = None


class ProductUpdateIn(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_highlighted: Optional[bool] = None


class VariantIn(BaseModel):
    type: Literal["size", "color", "style"]
    name: str
    additional_price: float = 0
    stock: int = Field(0, ge=0)
    sku: str = ""
    image_url: Optional[str] = None
    is_active: bool = True


class VariantUpdateIn(BaseModel):
    name: Optional[str] = None
    additional_price: Optional[float] = None
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class CategoryIn(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    order: int = 0
    is_active: bool = True
    is_subcategory: bool = False
    parent_category_id: Optional[str] = None


class CategoryUpdateIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    order: Optional[int] = None
    is_active: Optional[bool] = None
    is_subcategory: Optional[bool] = None
    parent_category_id: Optional[str] = None


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None


class ReviewUpdateIn(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None


class OrderLineIn(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1)


class OrderIn(BaseModel):
    order_items: List[OrderLineIn] = Field(..., min_length=1)
    shipping_address: Address
    shipping_cost: float = Field(0, ge=0)
    payment_method: PaymentMethod = "offline"
    offline_payment_method: Optional[OfflinePaymentMethod] = None
    payment_proof_url: Optional[str] = None
    notes: Optional[str] = None


class OrderStatusIn(BaseModel):
    status: Literal["pending", "approved", "shipping", "delivered", "cancelled"]
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    expected_delivery_date: Optional[datetime] = None


class OrderPaymentStatusIn(BaseModel):
    payment_status: Literal["pending", "approved", "rejected"]


class PostIn(BaseModel):
    title: str
    slug: str
    excerpt: Optional[str] = None
    content: str = ""
    featured_image: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    status: Literal["draft", "published"] = "draft"
    publish_date: Optional[datetime] = None


class PostUpdateIn(BaseModel):
    title: Optional[str] = None
    excerpt: Optional[str] = None
    content: Optional[str] = None
    featured_image: Optional[str] = None
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    status: Optional[Literal["draft", "published"]] = None
    publish_date: Optional[datetime] = None


class CommentIn(BaseModel):
    content: str
    parent_id: Optional[str] = None


class CommentEditIn(BaseModel):
    content: str


class BlogCategoryIn(BaseModel):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    order: int = 0
    is_active: bool = True


class BlogCategoryUpdateIn(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    order: Optional[int] = None
    is_active: Optional[bool] = None


class TagIn(BaseModel):
    name: str


class RatingIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ExchangeRatesIn(BaseModel):
    rates: Dict[str, float]


def changes(payload: BaseModel) -> Dict[str, Any]:
    return payload.model_dump(exclude_none=True)


# Endpoints
@app.post("/api/contact")
def send_contact(payload: ContactIn):
    try:
        data = contact.send_contact_message(payload.name, payload.email, payload.message)
    except ServiceError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.detail})
    return {"success": True, "data": data}


# Users
@app.post("/api/users")
def sign_up(payload: UserIn, x_user_id: Optional[str] = Header(None), db: Database = Depends(get_db)):
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return users.create_user_if_not_exists(db, x_user_id, payload.model_dump())


@app.get("/api/users/me")
def read_me(user: Dict[str, Any] = Depends(users.get_current_user)):
    return user


@app.patch("/api/users/me")
def update_me(payload: ProfileUpdateIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return users.update_user_profile(db, user["id"], changes(payload))


@app.get("/api/admin/users")
def admin_list_users(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return users.list_users(db)


@app.patch("/api/admin/users/{user_id}")
def admin_update_user(user_id: str, payload: AdminUserUpdateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    data = changes(payload)
    if "role" in data:
        users.set_user_role(db, user_id, data.pop("role"))
    return users.update_user_profile(db, user_id, data, allow_admin_fields=True)


# Events
@app.post("/api/events")
def create_event(payload: EventIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    event_id = events.create_event(db, payload.model_dump(), admin["id"])
    return events.get_event(db, event_id)


@app.get("/api/events")
def list_events(status: Optional[str] = None, db: Database = Depends(get_db)):
    return events.list_events(db, status)


@app.get("/api/events/featured")
def featured_events(limit: int = 6, db: Database = Depends(get_db)):
    return events.get_featured_events(db, limit)


@app.get("/api/events/country/{country}")
def events_by_country(country: str, db: Database = Depends(get_db)):
    return events.get_events_by_country(db, country)


@app.get("/api/events/slug/{slug}")
def read_event_by_slug(slug: str, db: Database = Depends(get_db)):
    return events.get_event_by_slug(db, slug)


@app.get("/api/events/{event_id}")
def read_event(event_id: str, db: Database = Depends(get_db)):
    return events.get_event(db, event_id)


@app.patch("/api/events/{event_id}")
def update_event(event_id: str, payload: EventUpdateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return events.update_event(db, event_id, changes(payload), admin["id"])


@app.delete("/api/events/{event_id}")
def delete_event(event_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    events.delete_event(db, event_id)
    return {"deleted": True}


# Tickets
@app.post("/api/tickets/purchase")
def purchase_tickets(payload: PurchaseIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return tickets.purchase_tickets(db, user["id"], payload.model_dump())


@app.get("/api/tickets/mine")
def my_ticket_transactions(user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return tickets.get_user_ticket_transactions(db, user["id"])


def own_transaction(db: Database, transaction_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    transaction = tickets.get_ticket_transaction(db, transaction_id)
    if transaction["user_id"] != user["id"] and user.get("role") != "admin":
        raise HTTPException(status_code=404, detail=f"Transaction with ID {transaction_id} not found")
    return transaction


@app.get("/api/tickets/transactions/{transaction_id}")
def read_ticket_transaction(transaction_id: str, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return own_transaction(db, transaction_id, user)


@app.post("/api/tickets/{ticket_id}/nominate")
def nominate_ticket(ticket_id: str, payload: NominationIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    if payload.transaction_id:
        own_transaction(db, payload.transaction_id, user)
    return tickets.nominate_ticket(
        db,
        ticket_id,
        payload.nominee_first_name,
        payload.nominee_last_name,
        payload.nominee_doc_type,
        payload.nominee_doc_number,
        transaction_id=payload.transaction_id,
    )


@app.get("/api/tickets/transactions/{transaction_id}/tickets/{ticket_id}/download")
def ticket_download(transaction_id: str, ticket_id: str, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    own_transaction(db, transaction_id, user)
    return tickets.get_ticket_download(db, transaction_id, ticket_id)


@app.get("/api/admin/tickets/pending")
def admin_pending_transactions(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.get_pending_ticket_transactions(db)


@app.get("/api/admin/tickets/paid")
def admin_paid_transactions(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.get_paid_ticket_transactions(db)


@app.post("/api/admin/tickets/transactions/{transaction_id}/approve")
def admin_approve_transaction(transaction_id: str, payload: ApproveTransactionIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.approve_ticket_transaction(
        db,
        transaction_id,
        admin["id"],
        payload.tickets_download_available_date,
        admin_notes=payload.admin_notes,
        ticket_pdf_urls=payload.ticket_pdf_urls,
    )


@app.post("/api/admin/tickets/transactions/{transaction_id}/reject")
def admin_reject_transaction(transaction_id: str, payload: RejectIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.reject_ticket_transaction(db, transaction_id, admin["id"], payload.admin_notes)


@app.patch("/api/admin/tickets/transactions/{transaction_id}")
def admin_update_transaction(transaction_id: str, payload: TransactionUpdateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.update_ticket_transaction(db, transaction_id, changes(payload))


@app.put("/api/admin/tickets/transactions/{transaction_id}/download-date")
def admin_update_download_date(transaction_id: str, payload: DownloadDateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.update_ticket_download_date(db, transaction_id, payload.tickets_download_available_date)


@app.put("/api/admin/tickets/transactions/{transaction_id}/tickets/{ticket_id}/pdf")
def admin_update_ticket_pdf(transaction_id: str, ticket_id: str, payload: TicketPdfIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.update_ticket_pdf(db, transaction_id, ticket_id, payload.ticket_pdf_url)


@app.post("/api/admin/tickets/assign")
def admin_assign_tickets(payload: AssignTicketsIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.assign_tickets_to_user(db, admin["id"], **payload.model_dump())


@app.post("/api/checkin/{transaction_id}/{ticket_id}")
def check_in(transaction_id: str, ticket_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return tickets.check_in_ticket(db, transaction_id, ticket_id)


# Installments
@app.post("/api/installments/{installment_id}/payment")
def submit_installment_payment(installment_id: str, payload: PaymentProofIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    installment = installments.get_installment(db, installment_id)
    own_transaction(db, installment["transaction_id"], user)
    return installments.submit_installment_payment(db, installment_id, payload.payment_proof_url)


@app.get("/api/admin/installments/pending")
def admin_pending_installments(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return installments.get_pending_installment_payments(db)


@app.post("/api/admin/installments/{installment_id}/approve")
def admin_approve_installment(installment_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return installments.approve_installment_payment(db, installment_id, admin["id"])


@app.post("/api/admin/installments/{installment_id}/reject")
def admin_reject_installment(installment_id: str, payload: InstallmentRejectIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return installments.reject_installment_payment(db, installment_id, admin["id"], payload.notes)


@app.post("/api/admin/installments/mark-overdue")
def admin_mark_overdue(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return {"marked": installments.mark_overdue_installments(db)}


# Files
@app.post("/api/uploads/{kind}")
async def upload(kind: str, file: UploadFile = File(...), user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    if kind != "payment-proofs" and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    content = await file.read()
    path = storage.build_path(kind, user["id"], file.filename)
    url = storage.upload_file(db, path, content, file.content_type)
    return {"url": url, "path": path}


@app.get("/api/files/{path:path}")
def download_file(path: str, db: Database = Depends(get_db)):
    f = storage.get_file(db, path)
    return Response(content=f["content"], media_type=f["content_type"])


# Store
@app.get("/api/products")
def list_products(category_id: Optional[str] = None, featured: bool = False, limit: int = 0, db: Database = Depends(get_db)):
    return store.list_products(db, category_id=category_id, featured=featured, limit=limit)


@app.get("/api/admin/products")
def admin_list_products(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.list_products(db, include_inactive=True)


@app.post("/api/products")
def create_product(payload: ProductIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    product_id = store.create_product(db, payload.model_dump())
    return store.get_product(db, product_id)


@app.get("/api/products/slug/{slug}")
def read_product_by_slug(slug: str, db: Database = Depends(get_db)):
    product = store.get_product_by_slug(db, slug)
    product["rating"] = store.get_product_rating(db, product["id"])
    return product


@app.get("/api/products/{product_id}")
def read_product(product_id: str, db: Database = Depends(get_db)):
    product = store.get_product(db, product_id)
    product["rating"] = store.get_product_rating(db, product_id)
    return product


@app.patch("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.update_product(db, product_id, changes(payload))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    store.delete_product(db, product_id)
    return {"deleted": True}


@app.post("/api/products/{product_id}/variants")
def add_variant(product_id: str, payload: VariantIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    variant_id = store.add_variant(db, product_id, payload.model_dump())
    return {"id": variant_id, "product_id": product_id, **payload.model_dump()}


@app.patch("/api/variants/{variant_id}")
def update_variant(variant_id: str, payload: VariantUpdateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.update_variant(db, variant_id, changes(payload))


@app.delete("/api/variants/{variant_id}")
def delete_variant(variant_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    store.delete_variant(db, variant_id)
    return {"deleted": True}


@app.get("/api/categories")
def list_categories(db: Database = Depends(get_db)):
    return store.list_categories(db)


@app.get("/api/categories/slug/{slug}")
def read_category_by_slug(slug: str, db: Database = Depends(get_db)):
    return store.get_category_by_slug(db, slug)


@app.post("/api/categories")
def create_category(payload: CategoryIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    category_id = store.create_category(db, payload.model_dump())
    return store.get_category(db, category_id)


@app.patch("/api/categories/{category_id}")
def update_category(category_id: str, payload: CategoryUpdateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.update_category(db, category_id, payload.model_dump(exclude_unset=True))


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    store.delete_category(db, category_id)
    return {"deleted": True}


@app.get("/api/products/{product_id}/reviews")
def list_reviews(product_id: str, db: Database = Depends(get_db)):
    return store.get_approved_reviews(db, product_id)


@app.get("/api/products/{product_id}/reviews/mine")
def my_reviews(product_id: str, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return store.get_user_reviews(db, user["id"], product_id)


@app.get("/api/products/{product_id}/rating")
def product_rating(product_id: str, db: Database = Depends(get_db)):
    return store.get_product_rating(db, product_id)


@app.post("/api/products/{product_id}/reviews")
def create_review(product_id: str, payload: ReviewIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    name = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p) or user["email"]
    return store.create_review(db, {**payload.model_dump(), "product_id": product_id, "user_id": user["id"], "user_name": name})


@app.patch("/api/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdateIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return store.update_review(db, review_id, user["id"], changes(payload))


@app.get("/api/admin/reviews/pending")
def admin_pending_reviews(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.get_pending_reviews(db)


@app.post("/api/admin/reviews/{review_id}/approve")
def admin_approve_review(review_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.approve_review(db, review_id, admin["id"])


@app.delete("/api/admin/reviews/{review_id}")
def admin_delete_review(review_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    store.delete_review(db, review_id)
    return {"deleted": True}


@app.post("/api/orders")
def create_order(payload: OrderIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return store.create_order(db, user["id"], payload.model_dump())


@app.get("/api/orders/mine")
def my_orders(user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return store.get_user_orders(db, user["id"])


@app.post("/api/orders/{order_id}/payment")
def submit_order_payment(order_id: str, payload: PaymentProofIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    order = store.get_order(db, order_id)
    if order["user_id"] != user["id"]:
        raise HTTPException(status_code=404, detail=f"Order with ID {order_id} not found")
    return store.submit_order_payment_proof(db, order_id, payload.payment_proof_url)


@app.get("/api/admin/orders")
def admin_list_orders(payment_status: Optional[str] = None, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.list_orders(db, payment_status)


@app.put("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, payload: OrderStatusIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.update_order_status(
        db,
        order_id,
        payload.status,
        admin_id=admin["id"],
        notes=payload.notes,
        tracking_number=payload.tracking_number,
        expected_delivery_date=payload.expected_delivery_date,
    )


@app.put("/api/admin/orders/{order_id}/payment-status")
def admin_update_order_payment(order_id: str, payload: OrderPaymentStatusIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return store.update_order_payment_status(db, order_id, payload.payment_status, admin["id"])


# Blog
@app.get("/api/blog")
def list_posts(
    page: int = 1,
    page_size: int = 9,
    category_id: Optional[str] = None,
    tag: Optional[str] = None,
    sort: str = "recent",
    db: Database = Depends(get_db),
):
    return blog.list_posts(db, page, page_size, category_id, tag, sort)


@app.get("/api/admin/blog")
def admin_list_posts(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return blog.list_posts_for_admin(db)


@app.post("/api/blog")
def create_post(payload: PostIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    post_id = blog.create_post(db, payload.model_dump(), admin["id"])
    return {"id": post_id}


@app.get("/api/blog/categories")
def list_blog_categories(db: Database = Depends(get_db)):
    return blog.list_blog_categories(db)


@app.post("/api/blog/categories")
def create_blog_category(payload: BlogCategoryIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    data = {k: v for k, v in payload.model_dump().items() if v is not None}
    category_id = blog.create_blog_category(db, data)
    return {"id": category_id}


@app.patch("/api/blog/categories/{category_id}")
def update_blog_category(category_id: str, payload: BlogCategoryUpdateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return blog.update_blog_category(db, category_id, changes(payload))


@app.delete("/api/blog/categories/{category_id}")
def delete_blog_category(category_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    blog.delete_blog_category(db, category_id)
    return {"deleted": True}


@app.get("/api/blog/tags")
def list_tags(db: Database = Depends(get_db)):
    return blog.list_tags(db)


@app.post("/api/blog/tags")
def create_tag(payload: TagIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return blog.create_or_update_tag(db, payload.name)


@app.get("/api/blog/{slug}")
def read_post(slug: str, db: Database = Depends(get_db)):
    return blog.get_post_by_slug(db, slug)


@app.patch("/api/blog/{post_id}")
def update_post(post_id: str, payload: PostUpdateIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return blog.update_post(db, post_id, changes(payload))


@app.delete("/api/blog/{post_id}")
def delete_post(post_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    blog.delete_post(db, post_id)
    return {"deleted": True}


@app.get("/api/blog/{post_id}/comments")
def list_comments(post_id: str, db: Database = Depends(get_db)):
    return blog.get_comments(db, post_id)


@app.post("/api/blog/{post_id}/comments")
def add_comment(post_id: str, payload: CommentIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    comment_id = blog.add_comment(db, post_id, user, payload.content, payload.parent_id)
    return {"id": comment_id, "is_approved": False}


@app.post("/api/blog/{post_id}/rating")
def rate_post(post_id: str, payload: RatingIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return blog.rate_post(db, post_id, user["id"], payload.rating, payload.comment)


@app.get("/api/blog/{post_id}/rating/mine")
def my_post_rating(post_id: str, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return blog.get_user_rating(db, post_id, user["id"])


@app.patch("/api/comments/{comment_id}")
def edit_comment(comment_id: str, payload: CommentEditIn, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return blog.edit_comment(db, comment_id, user["id"], payload.content)


@app.post("/api/comments/{comment_id}/like")
def like_comment(comment_id: str, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return blog.like_comment(db, comment_id, user["id"])


@app.delete("/api/comments/{comment_id}/like")
def unlike_comment(comment_id: str, user=Depends(users.get_current_user), db: Database = Depends(get_db)):
    return blog.unlike_comment(db, comment_id, user["id"])


@app.get("/api/admin/comments/pending")
def admin_pending_comments(admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return blog.get_unapproved_comments(db)


@app.post("/api/admin/comments/{comment_id}/approve")
def admin_approve_comment(comment_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return blog.approve_comment(db, comment_id, admin["id"])


@app.delete("/api/admin/comments/{comment_id}")
def admin_delete_comment(comment_id: str, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return blog.delete_comment(db, comment_id)


# Currency
@app.get("/api/exchange-rates")
def exchange_rates(db: Database = Depends(get_db)):
    return {"base": "USD", "rates": currency.get_exchange_rates(db)}


@app.put("/api/admin/exchange-rates")
def set_exchange_rates(payload: ExchangeRatesIn, admin=Depends(users.require_admin), db: Database = Depends(get_db)):
    return {"base": "USD", "rates": currency.set_exchange_rates(db, payload.rates)}


@app.get("/api/convert")
def convert(amount: float, from_currency: str = "USD", to_currency: str = "USD", db: Database = Depends(get_db)):
    rates = currency.get_exchange_rates(db)
    return {
        "amount": amount,
        "from": from_currency.upper(),
        "to": to_currency.upper(),
        "result": currency.convert_currency(amount, from_currency, to_currency, rates),
    }


# Expose schemas for admin viewer
@app.get("/schema")
def get_schema_definitions():
    return {name: model.model_json_schema() for name, model in COLLECTIONS.items()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)

"""
Database Schemas for the Event Ticketing & Store API

Each top-level Pydantic model below corresponds to a MongoDB collection
(see COLLECTIONS at the bottom). Ticket items are embedded in their
transaction document; installments live in their own collection and point
back to the transaction.
"""

from pydantic import BaseModel, Field
from typing import Dict, Literal, Optional, List
from datetime import datetime


PaymentMethod = Literal["online", "offline"]
OfflinePaymentMethod = Literal["yape", "plin", "transfer"]
PaymentType = Literal["full", "installment"]
PaymentStatus = Literal["pending", "approved", "rejected"]
TicketStatus = Literal["pending", "approved", "rejected", "cancelled", "used"]
InstallmentStatus = Literal["pending", "paid", "overdue", "cancelled"]
InstallmentFrequency = Literal["weekly", "biweekly", "monthly"]


class User(BaseModel):
    email: str = Field(..., description="Login email (lower-cased)")
    first_name: str = Field("", description="Given name")
    last_name: str = Field("", description="Family name")
    phone: str = Field("", description="Digits only")
    phone_prefix: str = Field("", description="International dialing prefix")
    country: str = Field("", description="ISO country code")
    document_type: str = Field("", description="DNI | CE | PASSPORT | ...")
    document_number: str = Field("")
    role: Literal["user", "admin"] = Field("user")
    auth_provider: Literal["email", "google", "facebook", "apple"] = Field("email")
    preferred_currency: str = Field("USD")
    avatar: Optional[str] = Field(None)
    is_active: bool = Field(True)


class Zone(BaseModel):
    id: str
    name: str
    capacity: int = Field(0, ge=0)
    description: Optional[str] = None
    is_active: bool = True


class ZonePricing(BaseModel):
    zone_id: str
    price: float = Field(..., ge=0)
    available: int = Field(0, ge=0)
    sold: int = Field(0, ge=0)


class SalesPhase(BaseModel):
    id: str
    name: str
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    zones_pricing: List[ZonePricing] = Field(default_factory=list)


class Event(BaseModel):
    name: str = Field(..., description="Event name")
    slug: str = Field(..., description="URL slug, unique")
    short_description: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[datetime] = Field(None, description="Event start datetime (ISO)")
    end_date: Optional[datetime] = None
    venue: Optional[str] = Field(None, description="Venue or location")
    country: Optional[str] = Field(None, description="ISO country code where the event takes place")
    currency: str = Field("USD", description="Currency for ticket pricing")
    status: Literal["draft", "published", "cancelled", "completed"] = Field("draft")
    zones: List[Zone] = Field(default_factory=list)
    sales_phases: List[SalesPhase] = Field(default_factory=list)
    sell_tickets_on_platform: bool = True
    external_ticket_url: Optional[str] = None
    allow_offline_payments: bool = True
    allow_installment_payments: bool = False
    is_highlighted: bool = False


class TicketItem(BaseModel):
    id: str
    transaction_id: str
    event_id: str
    zone_id: str
    phase_id: str = ""
    price: float = Field(..., ge=0)
    currency: str
    status: TicketStatus = "pending"
    is_nominated: bool = False
    nominee_first_name: Optional[str] = None
    nominee_last_name: Optional[str] = None
    nominee_doc_type: Optional[str] = None
    nominee_doc_number: Optional[str] = None
    ticket_pdf_url: Optional[str] = None
    used_at: Optional[datetime] = None


class TicketTransaction(BaseModel):
    user_id: str = Field(..., description="Buyer id")
    event_id: str = Field(..., description="Related event id")
    total_amount: float = Field(..., ge=0)
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    payment_type: PaymentType = "full"
    offline_payment_method: Optional[OfflinePaymentMethod] = None
    payment_proof_url: Optional[str] = None
    ticket_items: List[TicketItem] = Field(default_factory=list)
    number_of_installments: Optional[int] = None
    installment_frequency: Optional[InstallmentFrequency] = None
    admin_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    tickets_download_available_date: Optional[datetime] = None
    is_courtesy: bool = False
    all_installments_paid: Optional[bool] = None


class PaymentInstallment(BaseModel):
    transaction_id: str
    installment_number: int = Field(..., ge=1)
    amount: float = Field(..., ge=0)
    currency: str
    due_date: datetime
    status: InstallmentStatus = "pending"
    payment_proof_url: Optional[str] = None
    payment_date: Optional[datetime] = None
    admin_approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    notes: Optional[str] = None


class Product(BaseModel):
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
    has_variants: bool = False
    gender: Literal["male", "female", "unisex"] = "unisex"
    is_active: bool = True
    is_highlighted: bool = False
    sku: Optional[str] = None
    brand: Optional[str] = None


class ProductVariant(BaseModel):
    product_id: str
    type: Literal["size", "color", "style"]
    name: str
    additional_price: float = 0
    stock: int = Field(0, ge=0)
    sku: str = ""
    image_url: Optional[str] = None
    is_active: bool = True


class ProductCategory(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    order: int = 0
    is_active: bool = True
    is_subcategory: bool = False
    parent_category_id: Optional[str] = None
    subcategories: List[str] = Field(default_factory=list)


class ProductReview(BaseModel):
    product_id: str
    user_id: str
    user_name: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None
    approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    purchase_verified: bool = False


class OrderItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price_per_unit: float = Field(..., ge=0)
    subtotal: float = Field(..., ge=0)


class Address(BaseModel):
    full_name: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str = ""
    postal_code: str = ""
    country: str
    phone: str = ""


class Order(BaseModel):
    user_id: str
    total_amount: float = Field(..., ge=0)
    currency: str
    status: Literal["pending", "approved", "shipping", "delivered", "cancelled"] = "pending"
    payment_method: PaymentMethod
    offline_payment_method: Optional[OfflinePaymentMethod] = None
    payment_proof_url: Optional[str] = None
    payment_status: PaymentStatus = "pending"
    shipping_address: Address
    shipping_cost: float = 0
    notes: Optional[str] = None
    order_items: List[OrderItem]
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    tracking_number: Optional[str] = None
    expected_delivery_date: Optional[datetime] = None


class BlogPost(BaseModel):
    title: str
    slug: str
    excerpt: Optional[str] = None
    content: str = ""
    featured_image: Optional[str] = None
    categories: List[str] = Field(default_factory=list, description="blogCategories ids")
    tags: List[str] = Field(default_factory=list)
    author_id: Optional[str] = None
    status: Literal["draft", "published"] = "draft"
    publish_date: Optional[datetime] = None
    view_count: int = 0
    average_rating: float = 0.0
    rating_count: int = 0


class BlogComment(BaseModel):
    post_id: str
    user_id: str
    user_name: str
    content: str
    parent_id: Optional[str] = None
    is_approved: bool = False
    is_deleted: bool = False
    is_edited: bool = False
    likes: int = 0
    liked_by: List[str] = Field(default_factory=list)
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None


class BlogCategory(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    order: int = 0
    is_active: bool = True


class BlogTag(BaseModel):
    name: str
    slug: str
    post_count: int = 0


class BlogRating(BaseModel):
    post_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


COLLECTIONS: Dict[str, type] = {
    "users": User,
    "events": Event,
    "ticketTransactions": TicketTransaction,
    "paymentInstallments": PaymentInstallment,
    "products": Product,
    "productVariants": ProductVariant,
    "productCategories": ProductCategory,
    "productReviews": ProductReview,
    "orders": Order,
    "blog": BlogPost,
    "blogComments": BlogComment,
    "blogCategories": BlogCategory,
    "blogTags": BlogTag,
    "blogRatings": BlogRating,
}

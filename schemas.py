"""
Database Schemas for the Canteen Ordering API

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
"""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

Category = Literal["Breakfast", "Lunch", "Dinner", "Snacks", "Beverages"]
PaymentMethod = Literal["cash", "card", "online"]
PaymentStatus = Literal["pending", "paid", "failed"]
OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "picked_up", "cancelled", "expired"]
# "expired" is set by the expiry sweep only
ClientOrderStatus = Literal["pending", "confirmed", "preparing", "ready", "picked_up", "cancelled"]

CATEGORIES = ("Breakfast", "Lunch", "Dinner", "Snacks", "Beverages")
PAYMENT_METHODS = ("cash", "card", "online")
PAYMENT_STATUSES = ("pending", "paid", "failed")

DEFAULT_IMAGE = "https://via.placeholder.com/300x200?text=Food+Item"


class MenuItem(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Item name")
    description: str = Field(..., min_length=1, max_length=500, description="Short description")
    price: float = Field(..., ge=0, description="Unit price")
    stock: int = Field(0, ge=0, description="Units on hand")
    category: Category = Field("Lunch", description="Menu section")
    image: str = Field(DEFAULT_IMAGE, description="Picture URL")
    is_available: bool = Field(True, description="Available to order")


class OrderItem(BaseModel):
    menu_item_id: str = Field(..., description="Reference to MenuItem _id")
    name: str = Field(..., description="Snapshot of name at order time")
    price: float = Field(..., ge=0, description="Snapshot of unit price at order time")
    quantity: int = Field(..., ge=1)
    total_price: float = Field(..., ge=0, description="price x quantity")


class Order(BaseModel):
    order_number: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_phone: str = Field(..., min_length=1)
    pickup_time: datetime
    order_time: datetime
    payment_status: PaymentStatus = "pending"
    payment_method: PaymentMethod = "cash"
    notes: Optional[str] = Field(None, max_length=500)
    expires_at: datetime


# ----- Request payloads -----

class OrderLineIn(BaseModel):
    menu_item_id: str
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    items: List[OrderLineIn] = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_phone: str = Field(..., min_length=1)
    pickup_time: datetime
    payment_method: PaymentMethod = "cash"
    notes: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(BaseModel):
    status: ClientOrderStatus


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=1)
    operation: Literal["increase", "decrease"] = "decrease"

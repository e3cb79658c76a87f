from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_number = Column(String(50), unique=True, index=True, nullable=False)

    url = Column(String(2000), nullable=False)
    product_title = Column(String(500), nullable=False, default="")
    product_image_url = Column(String(2000), nullable=False, default="")
    product_description = Column(Text, nullable=False, default="")
    estimated_price = Column(Float, nullable=True)
    currency = Column(String(10), nullable=False, default="MXN")

    quantity = Column(Integer, nullable=False, default=1)
    justification = Column(Text, nullable=False)
    urgency = Column(String(20), nullable=False, default="normal")

    requester_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)

    is_amazon_url = Column(Boolean, nullable=False, default=False)
    amazon_asin = Column(String(20), nullable=True)
    added_to_cart = Column(Boolean, nullable=False, default=False)
    added_to_cart_at = Column(DateTime, nullable=True)
    cart_error = Column(Text, nullable=True)
    cart_attempts = Column(Integer, nullable=False, default=0)

    approved_by_id = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by_id = Column(Integer, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    info_request_note = Column(Text, nullable=True)
    info_requested_at = Column(DateTime, nullable=True)

    purchased_by_id = Column(Integer, nullable=True)
    purchased_at = Column(DateTime, nullable=True)
    purchase_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False)
    version = Column(Integer, nullable=False, default=0)

    history = relationship(
        "RequestHistory",
        order_by="RequestHistory.id",
        lazy="selectin",
    )


class RequestHistory(Base):
    __tablename__ = "request_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(Integer, ForeignKey("purchase_requests.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    action = Column(String(30), nullable=False)
    comment = Column(Text, nullable=False, default="")
    old_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=False)
    created_at = Column(DateTime, nullable=False)

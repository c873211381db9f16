from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Text,
    Index,
)


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class ReservationRow(Base):
    __tablename__ = "reservations"
    id = Column(String, primary_key=True)
    items = Column(Text, nullable=False)  # JSON list of line items
    total_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="eur")

    address = Column(String, nullable=False)
    pickup_date = Column(String, nullable=False)  # YYYY-MM-DD
    pickup_time = Column(String, nullable=False)
    customer_name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    email = Column(String, nullable=False)
    special_requests = Column(Text, nullable=False, default="")

    # pending | paid | expired
    status = Column(String, nullable=False, default="pending")
    # checkout session id / payment intent id at the provider
    session_id = Column(String, nullable=True)
    payment_id = Column(String, nullable=True)

    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("idx_reservations_session_id", "session_id"),
        Index("idx_reservations_created_at", "created_at"),
    )

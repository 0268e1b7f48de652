from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base

CATEGORIES = (
    "Food & Drink",
    "Shopping",
    "Transport",
    "Entertainment",
    "Health",
    "Subscriptions",
    "Other",
)
DEFAULT_CATEGORY = "Other"

TIER_FREE = "free"
TIER_PREMIUM = "premium"

SOURCE_RECEIPT = "receipt"
SOURCE_MANUAL = "manual"
SOURCE_BANK_STATEMENT = "bank_statement"
SOURCES = (SOURCE_RECEIPT, SOURCE_MANUAL, SOURCE_BANK_STATEMENT)

# id reported for an expense that was shown but never written
EPHEMERAL_ID = -1


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    profile_image_url = Column(String, nullable=True)

    tier = Column(String, nullable=False, default=TIER_FREE)
    monthly_upload_count = Column(Integer, nullable=False, default=0)
    monthly_upload_reset_date = Column(DateTime, nullable=True)
    has_annual_report = Column(Boolean, nullable=False, default=False)

    billing_customer_id = Column(String, nullable=True, index=True)
    billing_subscription_id = Column(String, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    expenses = relationship("Expense", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_premium(self) -> bool:
        return self.tier == TIER_PREMIUM


class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # cents
    description = Column(Text, nullable=False)
    date = Column(DateTime, nullable=False)
    category = Column(String, nullable=False, default=DEFAULT_CATEGORY)
    roast = Column(Text, nullable=False)
    source = Column(String, nullable=False, default=SOURCE_RECEIPT)
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="expenses")

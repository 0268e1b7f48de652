"""
Shared pytest fixtures for RoastMyWallet tests.
"""

import os
import sys

# Keep the app off the developer's database and off the network
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("GROQ_API_KEY", "test-key")

# Ensure the project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from datetime import datetime
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from groq import GroqError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from roastmywallet import models
from roastmywallet.database import Base, get_db
from roastmywallet.main import app
from roastmywallet.services import llm_service

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(autouse=True)
def offline_llm():
    """Every model call fails unless a test patches in a response."""
    with patch.object(llm_service, "chat", side_effect=GroqError("model unavailable in tests")) as chat:
        yield chat


@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db):
    """Test client bound to the in-memory database."""
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user_id='user-1', **profile):
    headers = {'X-User-Id': user_id}
    for key, value in profile.items():
        headers['X-User-' + key.replace('_', '-').title()] = value
    return headers


def make_user(db, user_id='user-1', tier=models.TIER_FREE, count=0, reset_date=None, has_annual_report=False):
    user = models.User(
        id=user_id,
        tier=tier,
        monthly_upload_count=count,
        monthly_upload_reset_date=reset_date,
        has_annual_report=has_annual_report,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_expense(db, user_id='user-1', amount=1000, date=None, category='Other',
                 description='Coffee', roast='Nice coffee.', source=models.SOURCE_MANUAL):
    expense = models.Expense(
        user_id=user_id,
        amount=amount,
        description=description,
        date=date or datetime(2024, 1, 15, 12, 0),
        category=category,
        roast=roast,
        source=source,
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    return expense


@pytest.fixture
def free_user(db):
    return make_user(db, 'free-user', tier=models.TIER_FREE)


@pytest.fixture
def premium_user(db):
    return make_user(db, 'premium-user', tier=models.TIER_PREMIUM)

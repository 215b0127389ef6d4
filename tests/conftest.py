import os

# Settings are read at import time
os.environ.setdefault("LISTING_API_URL", "http://listings.test/api/")
os.environ.setdefault("USER_MANAGEMENT_URL", "http://users.test")
os.environ.setdefault("SUPABASE_URL", "http://storage.test")
os.environ.setdefault("SUPABASE_KEY", "service-key")

import pytest
from app.schemas.session import UserSession
from fakes import FakeListingApi, FakeObjectStore

@pytest.fixture
def session():
    return UserSession(id="user-1", token="user-jwt")

@pytest.fixture
def store():
    return FakeObjectStore()

@pytest.fixture
def api():
    return FakeListingApi()

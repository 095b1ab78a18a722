from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes
from main import app, get_clock, get_db


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)

    def set(self, value: datetime):
        self.now = value


@pytest.fixture
def mongo_db():
    db = mongomock.MongoClient()["content_rewards_test"]
    ensure_indexes(db)
    return db


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def client(mongo_db, clock):
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def user_id(mongo_db):
    result = mongo_db["users"].insert_one({
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "role": "Regular",
        "user_image": [],
        "contentStartTime": None,
        "rewardAmount": 0.0,
    })
    return str(result.inserted_id)


@pytest.fixture
def content_id(mongo_db):
    result = mongo_db["content"].insert_one({
        "title": "Sunset timelapse",
        "body": "Shot on the pier",
        "category": "video",
        "author": "ada",
        "images": [],
        "videos": [{"url": "https://media.example.com/v/1.mp4", "cld_id": "v1"}],
        "comments": [],
        "likes": [],
        "views": 0,
        "is_premium": False,
        "published_status": "Published",
    })
    return str(result.inserted_id)

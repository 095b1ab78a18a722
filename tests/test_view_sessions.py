from datetime import timedelta

import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from database import parse_object_id
from errors import (
    ContentNotFound,
    DurationTooShort,
    NoOpenSession,
    SessionConflict,
    StoreUnavailable,
    UserNotFound,
)
from tests.stubs import StubCollection, raising
from view_sessions import RewardPolicy, SessionStore, ViewSessionEngine


@pytest.fixture
def store(mongo_db):
    return SessionStore(mongo_db["users"])


@pytest.fixture
def engine(mongo_db, store, clock):
    def find_content(content_id):
        oid = parse_object_id(content_id)
        return mongo_db["content"].find_one({"_id": oid}) if oid else None

    return ViewSessionEngine(store, find_content, RewardPolicy(), clock=clock)


def reward_of(mongo_db, user_id):
    return mongo_db["users"].find_one({"_id": ObjectId(user_id)})["rewardAmount"]


def test_end_while_idle_fails(engine, user_id, content_id):
    with pytest.raises(NoOpenSession):
        engine.end(user_id, content_id)


def test_start_records_clock_time(engine, store, clock, user_id, content_id):
    engine.start(user_id, content_id)
    assert store.read_open_session(user_id) == clock.now


def test_rewarded_after_ninety_seconds(engine, store, clock, mongo_db, user_id, content_id):
    engine.start(user_id, content_id)
    clock.advance(90)
    user = engine.end(user_id, content_id)

    assert user["rewardAmount"] == 0.12
    assert user["contentStartTime"] is None
    assert store.read_open_session(user_id) is None
    assert reward_of(mongo_db, user_id) == 0.12


def test_too_short_keeps_session_open(engine, store, clock, mongo_db, user_id, content_id):
    engine.start(user_id, content_id)
    started = store.read_open_session(user_id)
    clock.advance(30)

    with pytest.raises(DurationTooShort) as exc_info:
        engine.end(user_id, content_id)
    assert exc_info.value.elapsed_minutes == 0.5
    assert store.read_open_session(user_id) == started
    assert reward_of(mongo_db, user_id) == 0.0

    clock.advance(60)
    user = engine.end(user_id, content_id)
    assert user["rewardAmount"] == 0.12


def test_second_end_has_no_open_session(engine, clock, mongo_db, user_id, content_id):
    engine.start(user_id, content_id)
    clock.advance(120)
    engine.end(user_id, content_id)

    with pytest.raises(NoOpenSession):
        engine.end(user_id, content_id)
    assert reward_of(mongo_db, user_id) == 0.12


def test_restart_measures_from_latest_start(engine, clock, mongo_db, user_id, content_id):
    engine.start(user_id, content_id)
    clock.advance(45)
    engine.start(user_id, content_id)
    clock.advance(30)

    # 75s since the first start but only 30s since the second
    with pytest.raises(DurationTooShort):
        engine.end(user_id, content_id)

    clock.advance(60)
    assert engine.end(user_id, content_id)["rewardAmount"] == 0.12


def test_rewards_accumulate(engine, clock, mongo_db, user_id, content_id):
    for _ in range(3):
        engine.start(user_id, content_id)
        clock.advance(61)
        engine.end(user_id, content_id)
    assert reward_of(mongo_db, user_id) == 0.36


def test_clock_going_backwards_never_rewards(engine, store, clock, mongo_db, user_id, content_id):
    engine.start(user_id, content_id)
    clock.set(clock.now - timedelta(hours=1))

    with pytest.raises(DurationTooShort) as exc_info:
        engine.end(user_id, content_id)
    assert exc_info.value.elapsed_minutes < 0
    assert store.read_open_session(user_id) is not None
    assert reward_of(mongo_db, user_id) == 0.0


def test_unknown_content(engine, user_id):
    with pytest.raises(ContentNotFound):
        engine.start(user_id, str(ObjectId()))
    with pytest.raises(ContentNotFound):
        engine.end(user_id, "not-an-id")


def test_unknown_user(engine, content_id):
    with pytest.raises(UserNotFound):
        engine.start(str(ObjectId()), content_id)
    with pytest.raises(UserNotFound):
        engine.end("garbage", content_id)


def test_close_with_stale_start_time_conflicts(engine, store, clock, mongo_db, user_id, content_id):
    engine.start(user_id, content_id)
    stale = store.read_open_session(user_id)
    clock.advance(90)
    engine.end(user_id, content_id)

    # a concurrent end that read the same start time loses the race
    with pytest.raises(SessionConflict):
        store.close_session(user_id, RewardPolicy().credit(0.12), stale)
    assert reward_of(mongo_db, user_id) == 0.12


def test_close_after_restart_conflicts(store, clock, mongo_db, user_id):
    store.open_session(user_id, clock.now)
    stale = store.read_open_session(user_id)
    store.open_session(user_id, clock.now + timedelta(seconds=5))

    with pytest.raises(SessionConflict):
        store.close_session(user_id, RewardPolicy().credit(0), stale)
    assert store.read_open_session(user_id) == clock.now + timedelta(seconds=5)


def test_close_unknown_user(store, clock):
    with pytest.raises(UserNotFound):
        store.close_session(str(ObjectId()), RewardPolicy().credit(0), clock.now)


def test_store_failure_on_start(mongo_db, clock, user_id, content_id):
    users = StubCollection(mongo_db["users"], find_one_and_update=raising(PyMongoError("connection reset")))
    engine = ViewSessionEngine(
        SessionStore(users), lambda cid: mongo_db["content"].find_one({"_id": ObjectId(cid)}), clock=clock
    )

    with pytest.raises(StoreUnavailable) as exc_info:
        engine.start(user_id, content_id)
    assert exc_info.value.status_code == 500
    assert "connection reset" in exc_info.value.detail


def test_store_failure_on_read(mongo_db, clock, user_id):
    store = SessionStore(StubCollection(mongo_db["users"], find_one=raising(PyMongoError("timeout"))))
    with pytest.raises(StoreUnavailable):
        store.read_open_session(user_id)


def test_store_failure_on_close_credits_nothing(mongo_db, engine, clock, user_id, content_id):
    engine.start(user_id, content_id)
    clock.advance(90)
    engine.store = SessionStore(
        StubCollection(mongo_db["users"], find_one_and_update=raising(PyMongoError("not primary")))
    )

    with pytest.raises(StoreUnavailable):
        engine.end(user_id, content_id)
    assert reward_of(mongo_db, user_id) == 0.0


def test_content_lookup_failure(store, clock, user_id, content_id):
    engine = ViewSessionEngine(store, raising(PyMongoError("down")), clock=clock)
    with pytest.raises(StoreUnavailable):
        engine.start(user_id, content_id)


def test_custom_threshold_message(mongo_db, store, clock, user_id, content_id):
    engine = ViewSessionEngine(
        store,
        lambda cid: mongo_db["content"].find_one({"_id": ObjectId(cid)}),
        RewardPolicy(min_duration_minutes=5),
        clock=clock,
    )
    engine.start(user_id, content_id)
    clock.advance(120)

    with pytest.raises(DurationTooShort) as exc_info:
        engine.end(user_id, content_id)
    assert exc_info.value.detail == "Duration must be at least 5 minutes"
    assert exc_info.value.metadata["minMinutes"] == 5.0

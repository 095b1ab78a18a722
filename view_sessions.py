"""
Reward-eligible view sessions

A user has at most one open viewing session, stored as `contentStartTime` on
the user document. Closing a session that lasted long enough credits a fixed
reward to `rewardAmount`.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, Optional

from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from database import as_utc, parse_object_id, to_bson_datetime, utcnow
from errors import (
    ContentNotFound,
    DurationTooShort,
    NoOpenSession,
    SessionConflict,
    StoreUnavailable,
    UserNotFound,
)

DEFAULT_REWARD_PER_VIEW = Decimal("0.12")
DEFAULT_MIN_DURATION_MINUTES = 1.0

CENTS = Decimal("0.01")


class SessionStore:
    """Reads and writes the open-session field of user documents."""

    def __init__(self, users: Collection):
        self.users = users

    def _user_filter(self, user_id: str) -> Dict[str, Any]:
        oid = parse_object_id(user_id)
        if oid is None:
            raise UserNotFound(user_id)
        return {"_id": oid}

    def open_session(self, user_id: str, started_at: datetime) -> Dict[str, Any]:
        filt = self._user_filter(user_id)
        try:
            user = self.users.find_one_and_update(
                filt,
                {"$set": {"contentStartTime": to_bson_datetime(started_at)}},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        if user is None:
            raise UserNotFound(user_id)
        return user

    def read_session_state(self, user_id: str) -> Dict[str, Any]:
        """The user's open-session start (UTC or None) and current reward."""
        filt = self._user_filter(user_id)
        try:
            user = self.users.find_one(filt, {"contentStartTime": 1, "rewardAmount": 1})
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        if user is None:
            raise UserNotFound(user_id)
        return {
            "contentStartTime": as_utc(user.get("contentStartTime")),
            "rewardAmount": user.get("rewardAmount") or 0,
        }

    def read_open_session(self, user_id: str) -> Optional[datetime]:
        return self.read_session_state(user_id)["contentStartTime"]

    def close_session(
        self, user_id: str, new_reward_amount: Decimal, expected_started_at: datetime
    ) -> Dict[str, Any]:
        """Clear the session and set the reward, only if the session is unchanged."""
        filt = self._user_filter(user_id)
        guarded = dict(filt, contentStartTime=to_bson_datetime(expected_started_at))
        try:
            user = self.users.find_one_and_update(
                guarded,
                {"$set": {"contentStartTime": None, "rewardAmount": float(new_reward_amount)}},
                return_document=ReturnDocument.AFTER,
            )
            if user is None and self.users.find_one(filt, {"_id": 1}) is None:
                raise UserNotFound(user_id)
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        if user is None:
            raise SessionConflict(user_id)
        return user


@dataclass(frozen=True)
class Eligible:
    elapsed_minutes: float


@dataclass(frozen=True)
class NotYetEligible:
    elapsed_minutes: float


class RewardPolicy:
    def __init__(
        self,
        reward_per_view: Decimal = DEFAULT_REWARD_PER_VIEW,
        min_duration_minutes: float = DEFAULT_MIN_DURATION_MINUTES,
    ):
        self.reward_per_view = Decimal(reward_per_view)
        self.min_duration_minutes = float(min_duration_minutes)

    def evaluate(self, started_at: datetime, now: datetime):
        elapsed_minutes = (now - started_at).total_seconds() / 60
        # negative durations (clock skew) fall below any positive threshold
        if elapsed_minutes >= self.min_duration_minutes:
            return Eligible(elapsed_minutes)
        return NotYetEligible(elapsed_minutes)

    def credit(self, current_amount) -> Decimal:
        current = Decimal(str(current_amount or 0))
        return (current + self.reward_per_view).quantize(CENTS, rounding=ROUND_HALF_UP)


class ViewSessionEngine:
    """Start/end transitions of a user's viewing session.

    States are Idle (no contentStartTime) and Viewing. `start` always moves
    to Viewing, replacing any open session. `end` moves back to Idle only
    when the policy finds the session long enough.
    """

    def __init__(
        self,
        store: SessionStore,
        find_content: Callable[[str], Optional[Dict[str, Any]]],
        policy: Optional[RewardPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[logging.LoggerAdapter] = None,
    ):
        self.store = store
        self.find_content = find_content
        self.policy = policy or RewardPolicy()
        self.clock = clock
        self.logger = logger or logging.LoggerAdapter(logging.getLogger("content_rewards"), {})

    def _require_content(self, content_id: str) -> Dict[str, Any]:
        try:
            content = self.find_content(content_id)
        except PyMongoError as e:
            raise StoreUnavailable(str(e)) from e
        if content is None:
            raise ContentNotFound(content_id)
        return content

    def start(self, user_id: str, content_id: str) -> Dict[str, Any]:
        self._require_content(content_id)
        previous = self.store.read_open_session(user_id)
        if previous is not None:
            self.logger.warning(f"Replacing open session of user {user_id} started at {previous.isoformat()}")
        user = self.store.open_session(user_id, self.clock())
        self.logger.info(f"Content viewing started: user={user_id} content={content_id}")
        return user

    def end(self, user_id: str, content_id: str) -> Dict[str, Any]:
        self._require_content(content_id)
        state = self.store.read_session_state(user_id)
        started_at = state["contentStartTime"]
        if started_at is None:
            raise NoOpenSession(user_id)

        decision = self.policy.evaluate(started_at, self.clock())
        if isinstance(decision, NotYetEligible):
            self.logger.info(
                f"Session too short: user={user_id} elapsed={decision.elapsed_minutes:.3f}min"
            )
            raise DurationTooShort(decision.elapsed_minutes, self.policy.min_duration_minutes)

        new_amount = self.policy.credit(state["rewardAmount"])
        user = self.store.close_session(user_id, new_amount, started_at)
        self.logger.info(f"User rewarded: user={user_id} content={content_id} rewardAmount={new_amount}")
        return user

import os
import re
import uuid
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from database import (
    as_utc,
    create_document,
    ensure_indexes,
    get_documents,
    parse_object_id,
    to_bson_datetime,
    utcnow,
)
from errors import (
    CommentNotFound,
    ContentNotFound,
    DuplicateResource,
    NotAuthorized,
    ReplyNotFound,
    RewardsError,
    StoreUnavailable,
    UserNotFound,
)
from logging_config import LOGGER_NAME, request_logger, setup_logging
from schemas import Comment, Content, MediaFile, Reply, User
from view_sessions import RewardPolicy, SessionStore, ViewSessionEngine

REWARD_PER_VIEW = Decimal(os.getenv("REWARD_PER_VIEW", "0.12"))
MIN_VIEW_MINUTES = float(os.getenv("MIN_VIEW_MINUTES", "1"))

USERS = "users"
CONTENT = "content"
COMMENTS = "comment"
REPLIES = "reply"

setup_logging()
logger = logging.getLogger(f"{LOGGER_NAME}.api")

app = FastAPI(title="Content Rewards API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    log = request_logger(request_id, f"{LOGGER_NAME}.api")
    log.info(f"{request.method} {request.url.path}")
    try:
        response = await call_next(request)
    except Exception as e:
        response = internal_error_response(request_id, e)
    response.headers["X-Request-ID"] = request_id
    log.info(f"Status: {response.status_code}")
    return response


def internal_error_response(request_id: Optional[str], exc: Exception) -> JSONResponse:
    request_logger(request_id).error(f"Unhandled error: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content=RewardsError("Internal Server Error").to_dict())


@app.on_event("startup")
def startup_event():
    if database.db is not None:
        try:
            ensure_indexes(database.db)
        except PyMongoError as e:
            logger.error(f"Could not create indexes: {e}")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    return internal_error_response(getattr(request.state, "request_id", None), exc)


@app.exception_handler(RewardsError)
async def rewards_error_handler(request: Request, exc: RewardsError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    request_logger(getattr(request.state, "request_id", None)).error(f"Database error: {exc}")
    return JSONResponse(status_code=500, content=StoreUnavailable("Internal Server Error").to_dict())


# ---------- Models ----------
class UserIn(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    role: str = "Regular"


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, min_length=3)
    user_image: List[MediaFile] = Field(default_factory=list, description="Hosted images to append")


class UserOut(UserIn):
    id: str
    user_image: List[MediaFile] = Field(default_factory=list)
    contentStartTime: Optional[datetime] = None
    rewardAmount: float = 0.0


class ContentIn(BaseModel):
    title: str
    body: Optional[str] = None
    category: Optional[str] = None
    author: Optional[str] = None
    images: List[MediaFile] = Field(default_factory=list)
    videos: List[MediaFile] = Field(default_factory=list)


class ContentUpdate(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    category: Optional[str] = None
    images: Optional[List[MediaFile]] = None
    videos: Optional[List[MediaFile]] = None


class ContentOut(ContentIn):
    id: str
    comments: List[str] = Field(default_factory=list)
    likes: List[str] = Field(default_factory=list)
    views: int = 0
    is_premium: bool = False
    published_status: str = "Published"
    created_at: Optional[datetime] = None


class PremiumIn(BaseModel):
    isPremium: bool


class LikeIn(BaseModel):
    userId: str


class CommentIn(BaseModel):
    author: str
    body: str


class ViewSessionIn(BaseModel):
    contentId: str


# ---------- Helpers ----------

def to_id(doc: dict) -> dict:
    if not doc:
        return doc
    d = doc.copy()
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def get_db() -> Database:
    if database.db is None:
        raise StoreUnavailable()
    return database.db


def get_clock():
    return utcnow


def get_view_session_engine(
    request: Request,
    db: Database = Depends(get_db),
    clock=Depends(get_clock),
) -> ViewSessionEngine:
    def find_content(content_id: str):
        oid = parse_object_id(content_id)
        if oid is None:
            return None
        return db[CONTENT].find_one({"_id": oid}, {"_id": 1})

    return ViewSessionEngine(
        store=SessionStore(db[USERS]),
        find_content=find_content,
        policy=RewardPolicy(REWARD_PER_VIEW, MIN_VIEW_MINUTES),
        clock=clock,
        logger=request_logger(getattr(request.state, "request_id", None)),
    )


def find_or_404(db: Database, collection: str, doc_id: str, error):
    oid = parse_object_id(doc_id)
    doc = db[collection].find_one({"_id": oid}) if oid is not None else None
    if not doc:
        raise error(doc_id)
    return doc


# ---------- Routes ----------

@app.get("/")
def root():
    return {"service": "Content Rewards API", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
        "database_name": os.getenv("DATABASE_NAME") or "Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is None:
        return response
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["connection_status"] = "Connected"
        response["database"] = "Connected & Working"
    except PyMongoError as e:
        response["database"] = f"Connected but Error: {str(e)[:80]}"
    return response


# ---- Users ----
@app.post("/users/register", response_model=UserOut)
def register_user(payload: UserIn, db: Database = Depends(get_db)):
    email = payload.email.strip().lower()
    if db[USERS].find_one({"email": email}):
        raise DuplicateResource("User with this email already exists", metadata={"email": email})
    data = payload.model_dump()
    data["email"] = email
    doc = User(**data).model_dump(exclude={"created_at"})
    try:
        new_id = create_document(USERS, doc, database=db)
    except DuplicateKeyError:
        raise DuplicateResource("User with this email already exists", metadata={"email": email})
    logger.info(f"User {new_id} registered")
    return to_id(db[USERS].find_one({"_id": parse_object_id(new_id)}))


@app.get("/users", response_model=List[UserOut])
def list_users(skip: int = 0, limit: int = Query(default=50, le=200), db: Database = Depends(get_db)):
    return [to_id(u) for u in get_documents(USERS, skip=skip, limit=limit, database=db)]


@app.get("/users/{user_id}", response_model=UserOut)
def get_user(user_id: str, db: Database = Depends(get_db)):
    return to_id(find_or_404(db, USERS, user_id, UserNotFound))


@app.put("/users/{user_id}", response_model=UserOut)
def update_profile(user_id: str, payload: UserUpdate, db: Database = Depends(get_db)):
    user = find_or_404(db, USERS, user_id, UserNotFound)
    patch = payload.model_dump(exclude_unset=True, exclude={"user_image"})
    if "email" in patch:
        patch["email"] = patch["email"].strip().lower()
        if db[USERS].find_one({"email": patch["email"], "_id": {"$ne": user["_id"]}}):
            raise DuplicateResource("User with this email already exists", metadata={"email": patch["email"]})
    patch["updated_at"] = to_bson_datetime(utcnow())
    update = {"$set": patch}
    if payload.user_image:
        update["$push"] = {"user_image": {"$each": [img.model_dump() for img in payload.user_image]}}
    try:
        updated = db[USERS].find_one_and_update(
            {"_id": user["_id"]}, update, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise DuplicateResource("User with this email already exists", metadata={"email": patch["email"]})
    if updated is None:
        raise UserNotFound(user_id)
    logger.info(f"User {user_id} profile updated")
    return to_id(updated)


@app.get("/users/{user_id}/rewards")
def get_rewards(user_id: str, db: Database = Depends(get_db)):
    user = find_or_404(db, USERS, user_id, UserNotFound)
    return {
        "userId": user_id,
        "rewardAmount": user.get("rewardAmount", 0.0),
        "contentStartTime": as_utc(user.get("contentStartTime")),
    }


# ---- View sessions ----
@app.post("/users/{user_id}/content/start")
def start_viewing(
    user_id: str,
    payload: ViewSessionIn,
    engine: ViewSessionEngine = Depends(get_view_session_engine),
):
    user = engine.start(user_id, payload.contentId)
    return {"message": "Content viewing started", "contentStartTime": as_utc(user["contentStartTime"])}


@app.post("/users/{user_id}/content/end")
def end_viewing(
    user_id: str,
    payload: ViewSessionIn,
    engine: ViewSessionEngine = Depends(get_view_session_engine),
):
    user = engine.end(user_id, payload.contentId)
    return {
        "message": "User rewarded successfully",
        "userId": str(user["_id"]),
        "rewardAmount": user["rewardAmount"],
    }


# ---- Content ----
@app.get("/content", response_model=List[ContentOut])
def list_content(
    author: Optional[str] = None,
    title: Optional[str] = None,
    since: Optional[datetime] = None,
    skip: int = 0,
    limit: int = Query(default=20, le=100),
    db: Database = Depends(get_db),
):
    filt = {}
    if author:
        filt["author"] = author
    if title:
        filt["title"] = {"$regex": re.escape(title), "$options": "i"}
    if since:
        filt["created_at"] = {"$gte": to_bson_datetime(since)}
    return [to_id(x) for x in get_documents(CONTENT, filt, limit=limit, skip=skip, database=db)]


@app.post("/content", response_model=dict)
def create_content(payload: ContentIn, db: Database = Depends(get_db)):
    if db[CONTENT].find_one({"title": payload.title, "category": payload.category}):
        raise DuplicateResource(
            "Content with the same title already exists",
            metadata={"title": payload.title, "category": payload.category},
        )
    doc = Content(**payload.model_dump()).model_dump()
    new_id = create_document(CONTENT, doc, database=db)
    logger.info(f"Content {new_id} created")
    return {"id": new_id}


@app.get("/content/{content_id}", response_model=ContentOut)
def get_content(content_id: str, db: Database = Depends(get_db)):
    return to_id(find_or_404(db, CONTENT, content_id, ContentNotFound))


@app.put("/content/{content_id}", response_model=ContentOut)
def update_content(content_id: str, payload: ContentUpdate, db: Database = Depends(get_db)):
    content = find_or_404(db, CONTENT, content_id, ContentNotFound)
    patch = payload.model_dump(exclude_unset=True)
    patch["updated_at"] = to_bson_datetime(utcnow())
    updated = db[CONTENT].find_one_and_update(
        {"_id": content["_id"]}, {"$set": patch}, return_document=ReturnDocument.AFTER
    )
    if updated is None:
        raise ContentNotFound(content_id)
    return to_id(updated)


def delete_comments_of(db: Database, content: dict) -> int:
    comment_ids = [oid for oid in (parse_object_id(c) for c in content.get("comments", [])) if oid]
    if comment_ids:
        db[REPLIES].delete_many({"comment_id": {"$in": [str(c) for c in comment_ids]}})
        db[COMMENTS].delete_many({"_id": {"$in": comment_ids}})
    return len(comment_ids)


@app.delete("/content/by-author/{author}/{title}")
def delete_content_by_author(author: str, title: str, db: Database = Depends(get_db)):
    content = db[CONTENT].find_one_and_delete({"author": author, "title": title})
    if content is None:
        raise ContentNotFound(f"{author}/{title}")
    removed = delete_comments_of(db, content)
    logger.info(f"Content {content['_id']} by {author} deleted with {removed} comments")
    return {"deleted": True, "message": "Content deleted successfully"}


@app.delete("/content/{content_id}")
def delete_content(content_id: str, db: Database = Depends(get_db)):
    content = find_or_404(db, CONTENT, content_id, ContentNotFound)
    db[CONTENT].delete_one({"_id": content["_id"]})
    removed = delete_comments_of(db, content)
    logger.info(f"Content {content_id} deleted with {removed} comments")
    return {"deleted": True, "message": "Content deleted successfully"}


@app.post("/content/{content_id}/premium")
def make_premium(content_id: str, payload: PremiumIn, db: Database = Depends(get_db)):
    content = find_or_404(db, CONTENT, content_id, ContentNotFound)
    db[CONTENT].update_one({"_id": content["_id"]}, {"$set": {"is_premium": payload.isPremium}})
    state = "premium" if payload.isPremium else "free"
    return {"message": f"Content is now {state}", "isPremium": payload.isPremium}


@app.post("/content/{content_id}/views")
def increment_views(content_id: str, db: Database = Depends(get_db)):
    content = find_or_404(db, CONTENT, content_id, ContentNotFound)
    updated = db[CONTENT].find_one_and_update(
        {"_id": content["_id"]}, {"$inc": {"views": 1}}, return_document=ReturnDocument.AFTER
    )
    return {"message": "View count incremented successfully", "views": updated["views"]}


@app.post("/content/{content_id}/like")
def like_content(content_id: str, payload: LikeIn, db: Database = Depends(get_db)):
    content = find_or_404(db, CONTENT, content_id, ContentNotFound)
    find_or_404(db, USERS, payload.userId, UserNotFound)
    updated = db[CONTENT].find_one_and_update(
        {"_id": content["_id"]},
        {"$addToSet": {"likes": payload.userId}},
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Content liked successfully", "likes": len(updated["likes"])}


@app.post("/content/{content_id}/comments", status_code=201)
def add_comment(content_id: str, payload: CommentIn, db: Database = Depends(get_db)):
    content = find_or_404(db, CONTENT, content_id, ContentNotFound)
    doc = Comment(content_id=content_id, **payload.model_dump()).model_dump()
    comment_id = create_document(COMMENTS, doc, database=db)
    db[CONTENT].update_one({"_id": content["_id"]}, {"$push": {"comments": comment_id}})
    return to_id(db[COMMENTS].find_one({"_id": parse_object_id(comment_id)}))


def find_comment(db: Database, content_id: str, comment_id: str) -> dict:
    """A comment that exists and belongs to the given content."""
    find_or_404(db, CONTENT, content_id, ContentNotFound)
    comment = find_or_404(db, COMMENTS, comment_id, CommentNotFound)
    if comment.get("content_id") != content_id:
        raise CommentNotFound(comment_id)
    return comment


@app.post("/content/{content_id}/comments/{comment_id}/replies", status_code=201)
def add_reply(content_id: str, comment_id: str, payload: CommentIn, db: Database = Depends(get_db)):
    comment = find_comment(db, content_id, comment_id)
    doc = Reply(comment_id=comment_id, **payload.model_dump()).model_dump()
    reply_id = create_document(REPLIES, doc, database=db)
    db[COMMENTS].update_one({"_id": comment["_id"]}, {"$push": {"replies": reply_id}})
    return to_id(db[REPLIES].find_one({"_id": parse_object_id(reply_id)}))


@app.delete("/content/{content_id}/comments/{comment_id}/replies/{reply_id}")
def delete_reply(
    content_id: str,
    comment_id: str,
    reply_id: str,
    x_user_id: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
):
    comment = find_comment(db, content_id, comment_id)
    reply = find_or_404(db, REPLIES, reply_id, ReplyNotFound)
    if reply.get("comment_id") != comment_id:
        raise ReplyNotFound(reply_id)
    if not x_user_id or reply.get("author") != x_user_id:
        raise NotAuthorized()
    db[COMMENTS].update_one({"_id": comment["_id"]}, {"$pull": {"replies": reply_id}})
    db[REPLIES].delete_one({"_id": reply["_id"]})
    return {"message": "Reply deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

"""
Database Schemas for the Content Rewards API

Each Pydantic model represents a collection in MongoDB (collection name is the lowercase of the class name,
except User which lives in "users").
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class MediaFile(BaseModel):
    """Hosted media: permanent URL plus the handle used to delete it"""
    url: str
    cld_id: Optional[str] = None


class User(BaseModel):
    """
    Registered users and their viewing reward state
    Collection: "users"
    """
    first_name: str = Field(..., description="Given name")
    last_name: str = Field(..., description="Family name")
    email: str = Field(..., description="Unique login email")
    role: str = Field("Regular", description="Role name")
    user_image: List[MediaFile] = Field(default_factory=list)
    contentStartTime: Optional[datetime] = Field(None, description="Start of the open viewing session, if any")
    rewardAmount: float = Field(0.0, ge=0, description="Accumulated viewing rewards")
    created_at: Optional[datetime] = None


class Content(BaseModel):
    """
    Posts with attached images/videos
    Collection: "content"
    """
    title: str = Field(..., description="Title of the content")
    body: Optional[str] = Field(None)
    category: Optional[str] = Field(None)
    author: Optional[str] = Field(None)
    images: List[MediaFile] = Field(default_factory=list)
    videos: List[MediaFile] = Field(default_factory=list)
    comments: List[str] = Field(default_factory=list, description="Comment _id strings")
    likes: List[str] = Field(default_factory=list, description="User _id strings")
    views: int = Field(0, ge=0)
    is_premium: bool = False
    published_status: str = Field("Published")


class Comment(BaseModel):
    """
    Comments on content
    Collection: "comment"
    """
    content_id: str
    author: str
    body: str
    replies: List[str] = Field(default_factory=list, description="Reply _id strings")


class Reply(BaseModel):
    """
    Replies to comments
    Collection: "reply"
    """
    comment_id: str
    author: str
    body: str

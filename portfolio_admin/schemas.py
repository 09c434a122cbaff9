from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class LoginRequest(BaseModel):
    username: str
    password: str


class CreateAlbumRequest(BaseModel):
    title: str = Field(..., min_length=1)
    slug: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None
    visibility: str = "public"


class ErrorResponse(BaseModel):
    error: str


class UpdateAlbumRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1)
    subtitle: Optional[str] = None
    description: Optional[str] = None
    visibility: Optional[str] = None
    allow_downloads: Optional[bool] = None
    is_portfolio_album: Optional[bool] = None
    order: Optional[int] = None


class SetCoverRequest(BaseModel):
    photo_id: str


class ReorderPhotosRequest(BaseModel):
    photo_ids: List[str]


class MainPortfolioAlbumRequest(BaseModel):
    album_id: str

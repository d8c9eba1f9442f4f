"""
Request/response bodies for the dashboard API.
"""
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from interlink.db.models import JobStatus, MemberRole


def _check_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Please enter a valid URL")
    return value


# ─── Auth ────────────────────────────────────────────────────────────────────

class SignInRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)


class SignInResponse(BaseModel):
    token: str
    user_id: str
    expires_at: datetime


# ─── Projects ────────────────────────────────────────────────────────────────

class ProjectCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    site_url: str
    cornerstone_sheet: Optional[str] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @field_validator("site_url")
    @classmethod
    def valid_site_url(cls, v: str) -> str:
        return _check_url(v)

    @field_validator("cornerstone_sheet")
    @classmethod
    def valid_sheet(cls, v: Optional[str]) -> Optional[str]:
        if v == "":
            return None
        return _check_url(v)


class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    site_url: Optional[str] = None
    cornerstone_sheet: Optional[str] = None

    @field_validator("site_url")
    @classmethod
    def valid_site_url(cls, v: Optional[str]) -> Optional[str]:
        return _check_url(v)

    @field_validator("cornerstone_sheet")
    @classmethod
    def valid_sheet(cls, v: Optional[str]) -> Optional[str]:
        # "" clears the sheet
        if v == "":
            return v
        return _check_url(v)


# ─── Jobs ────────────────────────────────────────────────────────────────────

class JobCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    article_doc: str

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title is required")
        return v.strip()

    @field_validator("article_doc")
    @classmethod
    def valid_doc(cls, v: str) -> str:
        return _check_url(v)


class JobEdit(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    article_url: Optional[str] = None
    status: Optional[JobStatus] = None

    @field_validator("article_url")
    @classmethod
    def valid_article_url(cls, v: Optional[str]) -> Optional[str]:
        if v == "":
            return v
        return _check_url(v)


class JobResponse(BaseModel):
    id: str
    project_id: str
    title: str
    article_doc: str
    article_url: Optional[str] = None
    status: JobStatus
    anchors_added: int
    anchors_log: List[Dict[str, str]]
    original_doc_url: Optional[str] = None
    updated_doc_url: Optional[str] = None
    error_message: Optional[str] = None
    dispatch_attempts: int
    created_at: str
    updated_at: str


# ─── Organizations ───────────────────────────────────────────────────────────

class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class InviteCreate(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    role: MemberRole = MemberRole.MEMBER


# ─── Usage ───────────────────────────────────────────────────────────────────

class UsageResponse(BaseModel):
    jobs_used: int
    jobs_limit: int
    percentage: int
    plan_name: Optional[str] = None
    billing_period_start: str
    billing_period_end: str

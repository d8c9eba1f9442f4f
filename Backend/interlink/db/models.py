import uuid
from enum import Enum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from interlink.db.base import Base, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


TERMINAL_STATUSES = (JobStatus.DONE, JobStatus.ERROR)


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(320), nullable=False, unique=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True, unique=True)
    password_hash = Column(String(255), nullable=True)  # bcrypt; null accounts cannot sign in
    created_at = Column(DateTime, nullable=False, default=utcnow)


class AuthSession(Base):
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    user = relationship("User")


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    site_url = Column(String(2048), nullable=False)
    cornerstone_sheet = Column(String(2048), nullable=True)  # keyword sheet
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    jobs = relationship("Job", back_populates="project")


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'done', 'error')", name="ck_jobs_status"
        ),
        CheckConstraint("anchors_added >= 0", name="ck_jobs_anchors_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    article_doc = Column(String(2048), nullable=False)   # source Google Doc
    article_url = Column(String(2048), nullable=True)    # published article, set via edit
    status = Column(String(16), nullable=False, default=JobStatus.QUEUED.value, index=True)
    anchors_added = Column(Integer, nullable=False, default=0)
    anchors_log = Column(JSON, nullable=False, default=list)  # [{slug, phrase, url}]
    original_doc_url = Column(String(2048), nullable=True)
    updated_doc_url = Column(String(2048), nullable=True)
    error_message = Column(Text, nullable=True)
    dispatch_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    project = relationship("Project", back_populates="jobs")


class Plan(Base):
    __tablename__ = "plans"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    stripe_price_id = Column(String(255), nullable=False, unique=True)
    monthly_jobs_limit = Column(Integer, nullable=False)


class Usage(Base):
    __tablename__ = "usage"
    __table_args__ = (
        UniqueConstraint("user_id", "billing_period_start", name="uq_usage_user_period"),
        CheckConstraint("jobs_used >= 0", name="ck_usage_jobs_used_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("plans.id"), nullable=False)
    jobs_used = Column(Integer, nullable=False, default=0)
    jobs_limit = Column(Integer, nullable=False)
    billing_period_start = Column(DateTime, nullable=False)
    billing_period_end = Column(DateTime, nullable=False)
    stripe_subscription_id = Column(String(255), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    plan = relationship("Plan")


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class OrganizationMember(Base):
    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(16), nullable=False, default=MemberRole.MEMBER.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User")


class OrganizationInvite(Base):
    __tablename__ = "organization_invites"
    __table_args__ = (
        UniqueConstraint("organization_id", "email", name="uq_org_invite_email"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    email = Column(String(320), nullable=False)
    role = Column(String(16), nullable=False, default=MemberRole.MEMBER.value)
    invited_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

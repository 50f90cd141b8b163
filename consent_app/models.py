# consent_app/models.py
from sqlalchemy import Column, String, DateTime, Boolean, JSON, ForeignKey, Text, Integer, BigInteger, UniqueConstraint
from sqlalchemy.orm import relationship
import datetime
import uuid
from consent_app.db import Base

ROLE_STUDENT = "student"
ROLE_ORG = "org"
ROLES = (ROLE_STUDENT, ROLE_ORG)

def gen_uuid():
    return str(uuid.uuid4())

class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("name", "role", name="uq_user_name_role"),)
    address = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    documents = relationship("Document", back_populates="owner_user")

class Document(Base):
    __tablename__ = "documents"
    cid = Column(String, primary_key=True)
    owner = Column(String, ForeignKey("users.address"), index=True, nullable=False)
    category = Column(String, nullable=False, default="Document")
    original_name = Column(String, nullable=False)
    stored_name = Column(String, nullable=False)
    size = Column(Integer, nullable=False, default=0)
    mime_type = Column(String, nullable=True)
    uploaded_at = Column(DateTime, default=datetime.datetime.utcnow)
    # upload order; newest-first scans sort on this
    seq = Column(Integer, nullable=False, default=0, index=True)

    owner_user = relationship("User", back_populates="documents")

class AccessRequest(Base):
    __tablename__ = "access_requests"
    id = Column(String, primary_key=True, default=gen_uuid)
    student = Column(String, index=True, nullable=False)
    requester = Column(String, index=True, nullable=False)
    requester_name = Column(String, nullable=False, default="Organization")
    category = Column(String, nullable=False)
    note = Column(Text, nullable=False, default="")
    duration_seconds = Column(BigInteger, nullable=False)
    # epoch milliseconds, 0 until the first grant
    expiry_time = Column(BigInteger, nullable=False, default=0)
    is_granted = Column(Boolean, nullable=False, default=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    # never cleared once set
    bound_cid = Column(String, ForeignKey("documents.cid"), nullable=True)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    seq = Column(Integer, nullable=False, default=0, index=True)

    bound_document = relationship("Document")

class Audit(Base):
    __tablename__ = "audit"
    event_id = Column(String, primary_key=True, default=gen_uuid)
    actor = Column(String)
    action = Column(String)
    target = Column(String)
    ts = Column(DateTime, default=datetime.datetime.utcnow)
    meta = Column(JSON, default={})

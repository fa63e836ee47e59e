"""ORM model for application users (auth and RBAC)."""

from sqlalchemy import BigInteger, Boolean, Column, String

from app.models.base import Base, UTCDateTime


class User(Base):
    """
    User account for JWT authentication and role-based access control.

    id is assigned by the application at registration (high-resolution clock
    value), not by the database. role: 'admin' or 'user'.
    """

    __tablename__ = "users"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    username = Column(String(50), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default="user", index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime(), nullable=False, index=True)
    updated_at = Column(UTCDateTime(), nullable=False)
    last_login = Column(UTCDateTime(), nullable=True)

"""
User model - the owner of dispatches, tasks and notes
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from datetime import datetime
from dispatch_api.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    full_name = Column(String, nullable=True)

    # Bearer key presented by API clients; issued outside this service
    api_key = Column(String, unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

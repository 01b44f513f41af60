"""
Tenant Model - API-key holders for the webhook
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from datetime import datetime

from geofine.models.events import Base


class Tenant(Base):
    """A fleet operator. Managed outside this service; read-only here."""
    __tablename__ = 'tenants'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    api_key = Column(String(200), nullable=False, unique=True, index=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}', active={self.active})>"

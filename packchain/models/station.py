"""Station model - a cooperative that places packaging orders."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from packchain.database import Base, IdType


class Station(Base):
    """Station (cooperative) owning shopping lists and orders."""

    __tablename__ = 'station'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    internal_code = Column(String(50), nullable=True, unique=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    shopping_lists = relationship('ShoppingList', back_populates='station')

    def __repr__(self):
        return f"<Station(id={self.id}, name='{self.name}')>"

"""Supplier and SupplierSite models."""
from sqlalchemy import Column, BigInteger, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from packchain.database import Base, IdType


class Supplier(Base):
    """Supplier (packaging manufacturer or distributor)."""

    __tablename__ = 'supplier'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    siret = Column(String(14), nullable=True)
    specialization = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    sites = relationship(
        'SupplierSite',
        back_populates='supplier',
        cascade='all, delete-orphan',
        order_by='SupplierSite.id',
    )
    catalog_entries = relationship('ArticleSupplier', back_populates='supplier')

    @property
    def principal_site(self):
        return next((site for site in self.sites if site.is_principal), None)

    def __repr__(self):
        return f"<Supplier(id={self.id}, name='{self.name}', active={self.active})>"


class SupplierSite(Base):
    """A production or shipping site of a supplier."""

    __tablename__ = 'supplier_site'

    id = Column(IdType, primary_key=True, autoincrement=True)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    is_principal = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)

    # Address
    street = Column(String(255), nullable=True)
    postal_code = Column(String(20), nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)

    # Contact
    contact_name = Column(String(200), nullable=True)
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    supplier = relationship('Supplier', back_populates='sites')

    def __repr__(self):
        return f"<SupplierSite(id={self.id}, supplier_id={self.supplier_id}, name='{self.name}')>"

"""Article model and its per-supplier catalog terms."""
from sqlalchemy import Column, BigInteger, String, Boolean, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from packchain.database import Base, IdType


class Article(Base):
    """Packaging article (crate, pallet, film...)."""

    __tablename__ = 'article'

    id = Column(IdType, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True)
    designation = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    suppliers = relationship('ArticleSupplier', back_populates='article', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Article(id={self.id}, code='{self.code}')>"


class ArticleSupplier(Base):
    """
    Catalog reference - the live pricing and packaging terms of an article
    at a given supplier.

    These values are copied onto order lines at validation time; later
    changes never affect existing orders.
    """

    __tablename__ = 'article_supplier'
    __table_args__ = (
        UniqueConstraint('article_id', 'supplier_id', name='uq_article_supplier'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    article_id = Column(BigInteger, ForeignKey('article.id', ondelete='CASCADE'), nullable=False, index=True)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False, index=True)
    unit_price = Column(Numeric(12, 2), nullable=False)
    packaging_unit = Column(String(50), nullable=True)
    quantity_per_package = Column(BigInteger, nullable=False, default=1)
    supplier_reference = Column(String(100), nullable=True)

    # Relationships
    article = relationship('Article', back_populates='suppliers')
    supplier = relationship('Supplier', back_populates='catalog_entries')

    def __repr__(self):
        return (
            f"<ArticleSupplier(article_id={self.article_id}, "
            f"supplier_id={self.supplier_id}, unit_price={self.unit_price})>"
        )

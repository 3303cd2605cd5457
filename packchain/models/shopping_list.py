"""ShoppingList and ShoppingListLine models."""
import enum
from sqlalchemy import (
    Column, BigInteger, Integer, Date, DateTime, Enum, ForeignKey,
    Index, UniqueConstraint, CheckConstraint, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from packchain.database import Base, IdType


class ShoppingListStatus(enum.Enum):
    """Shopping list status enum."""
    DRAFT = 'DRAFT'
    PROCESSED = 'PROCESSED'


class ShoppingList(Base):
    """
    A station's working basket of (article, supplier, quantity) lines.

    A station holds at most one DRAFT list at a time. Once validated the list
    is PROCESSED, linked to the master order it produced, and never edited.
    """

    __tablename__ = 'shopping_list'
    __table_args__ = (
        Index(
            'uq_shopping_list_station_draft',
            'station_id',
            unique=True,
            postgresql_where=text("status = 'DRAFT'"),
            sqlite_where=text("status = 'DRAFT'"),
        ),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    station_id = Column(BigInteger, ForeignKey('station.id'), nullable=False, index=True)
    status = Column(
        Enum(ShoppingListStatus, name='shopping_list_status'),
        nullable=False,
        default=ShoppingListStatus.DRAFT,
    )
    created_by_id = Column(BigInteger, ForeignKey('app_user.id', ondelete='SET NULL'), nullable=True)
    master_order_id = Column(BigInteger, ForeignKey('master_order.id', ondelete='SET NULL'), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    station = relationship('Station', back_populates='shopping_lists')
    master_order = relationship('MasterOrder')
    lines = relationship(
        'ShoppingListLine',
        back_populates='shopping_list',
        cascade='all, delete-orphan',
        order_by='ShoppingListLine.id',
    )

    @property
    def is_draft(self):
        return self.status == ShoppingListStatus.DRAFT

    def __repr__(self):
        return f"<ShoppingList(id={self.id}, station_id={self.station_id}, status={self.status.value})>"


class ShoppingListLine(Base):
    """One (article, supplier) line of a shopping list."""

    __tablename__ = 'shopping_list_line'
    __table_args__ = (
        UniqueConstraint('shopping_list_id', 'article_id', 'supplier_id', name='uq_shopping_list_line'),
        CheckConstraint('quantity > 0', name='ck_shopping_list_line_quantity'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    shopping_list_id = Column(
        BigInteger,
        ForeignKey('shopping_list.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    article_id = Column(BigInteger, ForeignKey('article.id'), nullable=False)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    desired_delivery_date = Column(Date, nullable=True)

    # Relationships
    shopping_list = relationship('ShoppingList', back_populates='lines')
    article = relationship('Article')
    supplier = relationship('Supplier')

    def __repr__(self):
        return (
            f"<ShoppingListLine(id={self.id}, article_id={self.article_id}, "
            f"supplier_id={self.supplier_id}, quantity={self.quantity})>"
        )

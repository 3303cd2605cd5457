"""Order model and its dependent records."""
import enum
from decimal import Decimal
from sqlalchemy import (
    Column, BigInteger, Integer, String, Text, Numeric, Date, DateTime, Enum,
    ForeignKey, JSON, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from packchain.database import Base, IdType


class OrderStatus(enum.Enum):
    """Order lifecycle status, declared in lifecycle order."""
    REGISTERED = 'REGISTERED'
    CONFIRMED = 'CONFIRMED'
    SHIPPED = 'SHIPPED'
    RECEIVED = 'RECEIVED'
    CLOSED = 'CLOSED'
    INVOICED = 'INVOICED'
    ARCHIVED = 'ARCHIVED'
    REJECTED = 'REJECTED'


class NonConformityStage(enum.Enum):
    """When a non-conformity was reported."""
    RECEPTION = 'RECEPTION'
    POST_RECEPTION = 'POST_RECEPTION'


class Order(Base):
    """
    Order - one supplier's share of a validated shopping list.

    Pricing is frozen on the lines at creation. ``version`` is managed by the
    mapper and bumped on every UPDATE; a concurrent writer holding an older
    version gets a ``StaleDataError`` at flush.
    """

    __tablename__ = 'purchase_order'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_number = Column(String(64), nullable=False, unique=True)
    master_order_id = Column(
        BigInteger,
        ForeignKey('master_order.id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    station_id = Column(BigInteger, ForeignKey('station.id'), nullable=False, index=True)
    supplier_id = Column(BigInteger, ForeignKey('supplier.id'), nullable=False, index=True)
    status = Column(
        Enum(OrderStatus, name='order_status'),
        nullable=False,
        default=OrderStatus.REGISTERED,
        index=True,
    )
    total_excluding_tax = Column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    version = Column(Integer, nullable=False)
    created_by_id = Column(BigInteger, ForeignKey('app_user.id', ondelete='SET NULL'), nullable=True)

    # Shipment (set by the supplier on CONFIRMED -> SHIPPED)
    carrier = Column(String(200), nullable=True)
    tracking_number = Column(String(200), nullable=True)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    delivery_note_key = Column(String(500), nullable=True)

    # Receipt (set by the station on SHIPPED -> RECEIVED)
    received_at = Column(DateTime(timezone=True), nullable=True)
    signed_delivery_note_key = Column(String(500), nullable=True)

    rejection_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __mapper_args__ = {'version_id_col': version}

    # Relationships
    master_order = relationship('MasterOrder', back_populates='orders')
    station = relationship('Station')
    supplier = relationship('Supplier')
    lines = relationship(
        'OrderLine',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderLine.id',
    )
    non_conformities = relationship(
        'NonConformity',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='NonConformity.id',
    )
    status_history = relationship(
        'OrderStatusHistory',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderStatusHistory.id',
    )

    def document_keys(self):
        """Every object-store key referenced by this order."""
        keys = []
        if self.delivery_note_key:
            keys.append(self.delivery_note_key)
        if self.signed_delivery_note_key:
            keys.append(self.signed_delivery_note_key)
        for non_conformity in self.non_conformities:
            keys.extend(non_conformity.photo_keys or [])
        return keys

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', status={self.status.value})>"


class OrderLine(Base):
    """Order line with catalog terms frozen at validation time."""

    __tablename__ = 'purchase_order_line'
    __table_args__ = (
        CheckConstraint('ordered_quantity > 0', name='ck_order_line_quantity'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('purchase_order.id', ondelete='CASCADE'), nullable=False, index=True)
    article_id = Column(BigInteger, ForeignKey('article.id'), nullable=False)
    ordered_quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    packaging_unit = Column(String(50), nullable=True)
    quantity_per_package = Column(Integer, nullable=False, default=1)
    supplier_reference = Column(String(100), nullable=True)
    desired_delivery_date = Column(Date, nullable=True)
    confirmed_delivery_date = Column(Date, nullable=True)
    received_quantity = Column(Integer, nullable=True)

    # Relationships
    order = relationship('Order', back_populates='lines')
    article = relationship('Article')

    @property
    def line_total(self):
        return Decimal(self.unit_price) * self.ordered_quantity

    def __repr__(self):
        return f"<OrderLine(id={self.id}, article_id={self.article_id}, qty={self.ordered_quantity})>"


class NonConformity(Base):
    """Non-conformity reported on delivery or after reception."""

    __tablename__ = 'non_conformity'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('purchase_order.id', ondelete='CASCADE'), nullable=False, index=True)
    stage = Column(Enum(NonConformityStage, name='non_conformity_stage'), nullable=False)
    description = Column(Text, nullable=False)
    photo_keys = Column(JSON, nullable=False, default=list)
    reported_by_id = Column(BigInteger, ForeignKey('app_user.id', ondelete='SET NULL'), nullable=True)
    reported_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    order = relationship('Order', back_populates='non_conformities')

    def __repr__(self):
        return f"<NonConformity(id={self.id}, order_id={self.order_id}, stage={self.stage.value})>"


class OrderStatusHistory(Base):
    """One entry per status an order has entered."""

    __tablename__ = 'order_status_history'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('purchase_order.id', ondelete='CASCADE'), nullable=False, index=True)
    status = Column(Enum(OrderStatus, name='order_status'), nullable=False)
    comment = Column(Text, nullable=True)
    changed_by_id = Column(BigInteger, ForeignKey('app_user.id', ondelete='SET NULL'), nullable=True)
    changed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    order = relationship('Order', back_populates='status_history')

    def __repr__(self):
        return f"<OrderStatusHistory(order_id={self.order_id}, status={self.status.value})>"

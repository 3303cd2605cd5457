"""MasterOrder model - groups the orders produced by one validation."""
from decimal import Decimal
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from packchain.database import Base, IdType
from packchain.models.order import OrderStatus


class MasterOrder(Base):
    """
    Master order (commande globale).

    ``total_excluding_tax`` and ``supplier_count`` are kept equal to the sum
    and count of the child orders after every membership change.
    ``general_status`` is derived from the child statuses.
    """

    __tablename__ = 'master_order'

    id = Column(IdType, primary_key=True, autoincrement=True)
    reference_code = Column(String(64), nullable=False, unique=True)
    station_id = Column(BigInteger, ForeignKey('station.id'), nullable=False, index=True)
    general_status = Column(
        Enum(OrderStatus, name='order_status'),
        nullable=False,
        default=OrderStatus.REGISTERED,
    )
    total_excluding_tax = Column(Numeric(12, 2), nullable=False, default=Decimal('0.00'))
    supplier_count = Column(Integer, nullable=False, default=0)
    created_by_id = Column(BigInteger, ForeignKey('app_user.id', ondelete='SET NULL'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    station = relationship('Station')
    orders = relationship(
        'Order',
        back_populates='master_order',
        cascade='all, delete-orphan',
        order_by='Order.id',
    )

    def __repr__(self):
        return (
            f"<MasterOrder(id={self.id}, reference='{self.reference_code}', "
            f"status={self.general_status.value})>"
        )

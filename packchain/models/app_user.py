"""AppUser model - platform users bound to a station or a supplier."""
import enum
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime
from sqlalchemy.sql import func
from packchain.database import Base, IdType


class UserRole(enum.Enum):
    """Platform roles."""
    MANAGER = 'MANAGER'
    COORDINATOR = 'COORDINATOR'
    STATION = 'STATION'
    SUPPLIER = 'SUPPLIER'


# Roles acting for the platform itself rather than for a station or supplier
MANAGING_ROLES = (UserRole.MANAGER.value, UserRole.COORDINATOR.value)


class AppUser(Base):
    """
    AppUser model.

    ``entity_id`` points to a Station for STATION users and to a Supplier for
    SUPPLIER users. It is not a foreign key because the target table depends
    on the role.
    """

    __tablename__ = 'app_user'

    id = Column(IdType, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.STATION.value)
    entity_id = Column(BigInteger, nullable=True, index=True)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def is_managing_party(self):
        """Check if user acts for the platform (manager or coordinator)."""
        return self.role in MANAGING_ROLES

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}', role='{self.role}')>"

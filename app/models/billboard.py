"""Billboard inventory model."""

from sqlalchemy import Column, String, DateTime, Integer, Date, Boolean
from sqlalchemy.sql import func

from app.database import Base


class Billboard(Base):
    """A physical billboard face available for rent."""

    __tablename__ = "billboards"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    size = Column(String(50), nullable=True, index=True)  # size code, e.g. "12x4"
    city = Column(String(100), nullable=True, index=True)
    municipality = Column(String(100), nullable=True)

    # Current rental (cleared when the billboard is removed)
    status = Column(String(30), default="available")  # available, rented, reserved, maintenance
    contract_number = Column(String(50), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)
    ad_type = Column(String(100), nullable=True)
    rent_start_date = Column(Date, nullable=True)
    rent_end_date = Column(Date, nullable=True)

    has_cutout = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Billboard {self.id} {self.size} {self.city}>"

"""Billboard rental contract model."""

from sqlalchemy import Column, String, DateTime, Text, Integer, Date, Boolean, Float
from sqlalchemy.sql import func

from app.database import Base


class Contract(Base):
    """Rental agreement covering one or more billboards."""

    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)

    # Contract identification (numeric string, e.g. "1086")
    contract_number = Column(String(50), unique=True, nullable=False, index=True)
    customer_name = Column(String(255), nullable=True)
    ad_type = Column(String(100), nullable=True)

    # Rental term
    start_date = Column(Date, nullable=True, index=True)
    end_date = Column(Date, nullable=True, index=True)

    # Billboards rented under this contract, comma separated ("12,40,41")
    billboard_ids = Column(Text, nullable=True)

    # Pricing
    rent_cost = Column(Float, default=0.0)
    installation_cost = Column(Float, default=0.0)
    print_cost = Column(Float, default=0.0)
    total_paid = Column(Float, default=0.0)

    # Operating fee (percentages)
    operating_fee_rate = Column(Float, default=0.0)
    operating_fee_rate_installation = Column(Float, nullable=True)
    operating_fee_rate_print = Column(Float, nullable=True)
    include_operating_in_installation = Column(Boolean, default=False)
    include_operating_in_print = Column(Boolean, default=False)

    # Status
    status = Column(String(20), default="active")

    # Audit
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Contract {self.contract_number} - {self.customer_name}>"

"""Customer payment entries recorded against contracts."""

from sqlalchemy import Column, String, DateTime, Text, Integer, Float
from sqlalchemy.sql import func

from app.database import Base


class CustomerPayment(Base):
    """A receipt, account payment, or general payment from a customer."""

    __tablename__ = "customer_payments"

    id = Column(Integer, primary_key=True, index=True)
    contract_number = Column(String(50), nullable=True, index=True)  # null for general payments
    customer_name = Column(String(255), nullable=True)

    amount = Column(Float, nullable=False, default=0.0)
    entry_type = Column(String(30), nullable=False, index=True)  # receipt, account_payment, payment, invoice, ...
    paid_at = Column(DateTime(timezone=True), nullable=True, index=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<CustomerPayment {self.id} {self.entry_type} {self.amount}>"

"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .contract import ContractFactory, ExpiredContractFactory, PaymentFactory
from .withdrawal import WithdrawalFactory, ContractRangeClosureFactory
from .billboard import BillboardFactory, TeamFactory

__all__ = [
    "ContractFactory",
    "ExpiredContractFactory",
    "PaymentFactory",
    "WithdrawalFactory",
    "ContractRangeClosureFactory",
    "BillboardFactory",
    "TeamFactory",
]

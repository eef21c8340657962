"""
Local-first repositories, one per business entity.
"""

from .base import QUEUED_MESSAGE, EntityRepository, MutationOutcome, MutationStatus
from .branches import BranchRepository
from .customers import CustomerRepository
from .equipment import EquipmentRepository
from .expenses import ExpenseRepository
from .maintenance import MaintenanceRepository
from .rentals import RentalRepository, compute_item_charge, days_between

__all__ = [
    "QUEUED_MESSAGE",
    "EntityRepository",
    "MutationOutcome",
    "MutationStatus",
    "BranchRepository",
    "CustomerRepository",
    "EquipmentRepository",
    "ExpenseRepository",
    "MaintenanceRepository",
    "RentalRepository",
    "compute_item_charge",
    "days_between",
]

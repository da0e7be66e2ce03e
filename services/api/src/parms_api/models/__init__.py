"""ORM 模型导出集合。"""

from parms_api.models.auth import RefreshToken, User, UserCredential
from parms_api.models.clinical import Appointment, Patient, Prescription
from parms_api.models.federated import BillingRecord, StaffMember

__all__ = [
    "Appointment",
    "BillingRecord",
    "Patient",
    "Prescription",
    "RefreshToken",
    "StaffMember",
    "User",
    "UserCredential",
]

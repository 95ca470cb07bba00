from schoolfees.core.models.student import Guardian, Student
from schoolfees.core.models.fee_structure import FeeStructure
from schoolfees.core.models.student_fee_status import StudentFeeStatus
from schoolfees.core.models.fee_payment import FeePayment
from schoolfees.core.models.system_config import RECEIPT_COUNTER_NAME, SystemCounter
from schoolfees.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "FeeAuditLog",
    "FeePayment",
    "FeeStructure",
    "Guardian",
    "RECEIPT_COUNTER_NAME",
    "Student",
    "StudentFeeStatus",
    "SystemCounter",
]

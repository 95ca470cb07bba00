"""Fees schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from schoolfees.core.enums import FeeCategory, FeeStatus, PaymentMethod, PaymentStatus
from schoolfees.core.keys import check_session, check_term


# --- Fee Structure ---
class FeeItem(BaseModel):
    category: FeeCategory
    description: str = Field(..., max_length=255)
    amount: Decimal = Field(..., ge=0)
    is_mandatory: bool = True


class FeeStructureSet(BaseModel):
    class_id: str = Field(..., min_length=1, max_length=64)
    class_name: Optional[str] = None
    term: str = Field(..., min_length=1, max_length=50)
    session: str = Field(..., min_length=1, max_length=20, description="e.g. 2025/2026")
    academic_year: Optional[str] = Field(None, description="Defaults to session")
    items: List[FeeItem] = Field(..., min_length=1)
    due_date: date
    created_by: str = Field(..., min_length=1, max_length=64)

    @field_validator("class_id", "term", "session", "created_by")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("term")
    @classmethod
    def term_is_key_safe(cls, v: str) -> str:
        return check_term(v)

    @field_validator("session")
    @classmethod
    def session_is_key_safe(cls, v: str) -> str:
        return check_session(v)


class FeeStructureResponse(BaseModel):
    id: str
    class_id: str
    class_name: Optional[str] = None
    term: str
    session: str
    academic_year: str
    items: List[FeeItem]
    total_amount: Decimal
    due_date: date
    created_by: str
    is_active: bool
    students_initialized: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# --- Student Fee Status ---
class StudentFeeStatusResponse(BaseModel):
    id: str
    student_id: str
    student_name: str
    student_class: Optional[str] = None
    class_id: str
    parent_id: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    term: str
    session: str
    academic_year: str
    total_fees: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: FeeStatus
    payment_ids: List[str]
    due_date: date
    is_overdue: bool
    days_overdue: int
    last_payment_date: Optional[datetime] = None
    last_payment_amount: Optional[Decimal] = None
    updated_at: datetime

    class Config:
        from_attributes = True


# --- Payment ---
class PaymentCreate(BaseModel):
    student_id: str = Field(..., min_length=1, max_length=64)
    term: str = Field(..., min_length=1, max_length=50)
    session: str = Field(..., min_length=1, max_length=20)
    academic_year: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    payment_date: Optional[datetime] = None
    reference: Optional[str] = Field(None, max_length=100)
    bank_name: Optional[str] = Field(None, max_length=100)
    account_name: Optional[str] = Field(None, max_length=100)
    cheque_number: Optional[str] = Field(None, max_length=50)
    items: List[FeeItem] = Field(default_factory=list)
    notes: Optional[str] = None
    received_by: str = Field(..., min_length=1, max_length=64)
    received_by_name: Optional[str] = None

    @field_validator("student_id", "term", "session", "received_by")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("term")
    @classmethod
    def term_is_key_safe(cls, v: str) -> str:
        return check_term(v)

    @field_validator("session")
    @classmethod
    def session_is_key_safe(cls, v: str) -> str:
        return check_session(v)


class PaymentResponse(BaseModel):
    id: UUID
    student_id: str
    student_name: str
    student_class: Optional[str] = None
    student_admission_number: Optional[str] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    term: str
    session: str
    academic_year: str
    amount: Decimal
    method: PaymentMethod
    payment_date: datetime
    reference: str
    bank_name: Optional[str] = None
    account_name: Optional[str] = None
    cheque_number: Optional[str] = None
    notes: Optional[str] = None
    items: List[FeeItem]
    receipt_number: str
    is_emergency_receipt: bool
    received_by: str
    received_by_name: Optional[str] = None
    status: PaymentStatus
    ledger_applied: bool
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RecordPaymentResponse(BaseModel):
    payment_id: UUID
    receipt_number: str
    is_emergency_receipt: bool = False
    fee_status: StudentFeeStatusResponse


class PaymentCancel(BaseModel):
    cancelled_by: str = Field(..., min_length=1, max_length=64)
    reason: str = Field(..., min_length=1)


class CancelPaymentResponse(BaseModel):
    payment: PaymentResponse
    fee_status: Optional[StudentFeeStatusResponse] = None


class ReconcilePaymentResponse(BaseModel):
    payment_id: UUID
    fee_status: StudentFeeStatusResponse


# --- Receipt ---
class IssuedReceipt(BaseModel):
    """Receipt number handed out by the sequencer. sequence is None for emergency numbers."""

    number: str
    year: str
    sequence: Optional[int] = None
    is_emergency: bool = False

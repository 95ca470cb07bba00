from enum import Enum


class FeeCategory(str, Enum):
    TUITION = "tuition"
    DEVELOPMENT = "development"
    SPORTS = "sports"
    LIBRARY = "library"
    EXAM = "exam"
    TRANSPORT = "transport"
    UNIFORM = "uniform"
    BOOKS = "books"
    PTA = "pta"
    EXCURSION = "excursion"
    OTHER = "other"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    POS = "pos"
    CHEQUE = "cheque"
    CARD = "card"
    PAYSTACK = "paystack"
    OTHER = "other"


class FeeStatus(str, Enum):
    unpaid = "unpaid"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"


# Statuses that put a student on the defaulters list.
DEFAULTER_STATUSES = (FeeStatus.unpaid, FeeStatus.partial, FeeStatus.overdue)


class PaymentStatus(str, Enum):
    verified = "verified"
    cancelled = "cancelled"

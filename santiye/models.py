from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List
import datetime
from decimal import Decimal
from enum import Enum


class CamelModel(BaseModel):
    """JSON uses camelCase; snake_case field names are accepted too"""

    class Config:
        populate_by_name = True
        alias_generator = to_camel
        use_enum_values = True


# ============================================
# DOMAIN ENUMERATIONS
# ============================================
class TransactionType(str, Enum):
    INCOME = "Gelir"
    EXPENSE = "Gider"


class InvoiceType(str, Enum):
    PURCHASE = "Alış"
    SALE = "Satış"


class InvoiceStatus(str, Enum):
    UNPAID = "Ödenmedi"
    PARTIALLY_PAID = "Kısmi Ödendi"
    PAID = "Ödendi"


class ProgressPaymentStatus(str, Enum):
    PENDING = "Bekliyor"
    PARTIALLY_PAID = "Kısmi Ödendi"
    PAID = "Ödendi"


class ProjectStatus(str, Enum):
    PLANNING = "Planlama"
    IN_PROGRESS = "Devam Ediyor"
    COMPLETED = "Tamamlandı"
    ON_HOLD = "Askıda"


class IsGrubu(str, Enum):
    """Work category"""
    KABA_IMALAT = "Kaba İmalat"
    INCE_IMALAT = "İnce İmalat"
    MEKANIK_TESISAT = "Mekanik Tesisat"
    ELEKTRIK_TESISAT = "Elektrik Tesisat"
    CEVRE_DUZENLEMESI = "Çevre Düzenlemesi ve Altyapı"
    GENEL_GIDERLER = "Genel Giderler ve Endirekt Giderler"


class RayicGrubu(str, Enum):
    """Cost category"""
    MALZEME = "Malzeme"
    ISCILIK = "İşçilik"
    MAKINE_EKIPMAN = "Makine Ekipman"
    PAKET = "Paket"
    GENEL_GIDERLER = "Genel Giderler ve Endirekt Giderler"


# incomeKind stamped on income transactions generated from a sale invoice
PROGRESS_PAYMENT_INCOME_KIND = "Hakediş Geliri"

# Transaction type <-> invoice type of a linked pair
INVOICE_TYPE_FOR_TRANSACTION = {
    TransactionType.INCOME.value: InvoiceType.SALE.value,
    TransactionType.EXPENSE.value: InvoiceType.PURCHASE.value,
}
TRANSACTION_TYPE_FOR_INVOICE = {
    InvoiceType.SALE.value: TransactionType.INCOME.value,
    InvoiceType.PURCHASE.value: TransactionType.EXPENSE.value,
}


# ============================================
# PROJECT MODEL
# ============================================
class ProjectCreate(CamelModel):
    name: str = Field(..., min_length=1)
    location: Optional[str] = None
    area: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    status: ProjectStatus = ProjectStatus.PLANNING
    description: Optional[str] = None
    notes: Optional[str] = None
    customer_id: Optional[str] = None
    advance_payment: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)  # Avans


class ProjectUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    location: Optional[str] = None
    area: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    status: Optional[ProjectStatus] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    customer_id: Optional[str] = None
    advance_payment: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)


# ============================================
# BUDGET ITEM MODEL
# ============================================
class BudgetItemCreate(CamelModel):
    project_id: str
    name: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)
    unit: str
    unit_price: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)
    is_grubu: IsGrubu
    rayic_grubu: RayicGrubu


class BudgetItemUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    quantity: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    is_grubu: Optional[IsGrubu] = None
    rayic_grubu: Optional[RayicGrubu] = None


# ============================================
# TRANSACTION MODEL (Gelir / Gider)
# ============================================
class TransactionCreate(CamelModel):
    project_id: str
    type: TransactionType
    amount: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)
    date: datetime.date
    description: Optional[str] = None
    is_grubu: IsGrubu
    rayic_grubu: RayicGrubu
    invoice_number: Optional[str] = None
    customer_id: Optional[str] = None
    subcontractor_id: Optional[str] = None
    income_kind: Optional[str] = None
    payment_method: Optional[str] = None


class TransactionCreateRequest(TransactionCreate):
    create_invoice: bool = False
    invoice_tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)


class TransactionUpdate(CamelModel):
    """Back-reference fields are owned by the linking/hakediş services"""
    project_id: Optional[str] = None
    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    date: Optional[datetime.date] = None
    description: Optional[str] = None
    is_grubu: Optional[IsGrubu] = None
    rayic_grubu: Optional[RayicGrubu] = None
    invoice_number: Optional[str] = None
    customer_id: Optional[str] = None
    subcontractor_id: Optional[str] = None
    income_kind: Optional[str] = None
    payment_method: Optional[str] = None


# ============================================
# INVOICE MODEL (Alış / Satış)
# ============================================
class InvoiceCreate(CamelModel):
    invoice_number: str = Field(..., min_length=1)
    type: InvoiceType
    project_id: Optional[str] = None
    customer_id: Optional[str] = None  # Satış faturası için müşteri
    subcontractor_id: Optional[str] = None  # Alış faturası için taşeron
    date: datetime.date
    due_date: Optional[datetime.date] = None
    subtotal: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)  # KDV hariç
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)  # DEFAULT_INVOICE_TAX_RATE if omitted
    status: InvoiceStatus = InvoiceStatus.UNPAID
    paid_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    description: Optional[str] = None
    notes: Optional[str] = None


class InvoiceCreateRequest(InvoiceCreate):
    create_transaction: bool = False
    is_grubu: Optional[IsGrubu] = None
    rayic_grubu: Optional[RayicGrubu] = None
    payment_method: Optional[str] = None


class InvoiceUpdate(CamelModel):
    invoice_number: Optional[str] = Field(default=None, min_length=1)
    type: Optional[InvoiceType] = None
    project_id: Optional[str] = None
    customer_id: Optional[str] = None
    subcontractor_id: Optional[str] = None
    date: Optional[datetime.date] = None
    due_date: Optional[datetime.date] = None
    subtotal: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)
    status: Optional[InvoiceStatus] = None
    paid_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    description: Optional[str] = None
    notes: Optional[str] = None


# ============================================
# PROGRESS PAYMENT MODEL (Hakediş)
# ============================================
class ProgressPaymentCreate(CamelModel):
    project_id: str
    payment_number: Optional[int] = Field(default=None, ge=1)  # next free number if omitted
    date: datetime.date
    description: str = ""
    amount: Optional[Decimal] = Field(default=None, max_digits=18)  # recomputed from transaction_ids
    contractor_fee_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100, max_digits=5, decimal_places=2)
    advance_deduction_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100, max_digits=5, decimal_places=2)
    received_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    status: ProgressPaymentStatus = ProgressPaymentStatus.PENDING
    transaction_ids: List[str] = Field(default_factory=list)


class ProgressPaymentUpdate(CamelModel):
    project_id: Optional[str] = None
    payment_number: Optional[int] = Field(default=None, ge=1)
    date: Optional[datetime.date] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, max_digits=18)
    contractor_fee_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)
    advance_deduction_rate: Optional[Decimal] = Field(default=None, ge=0, le=100, max_digits=5, decimal_places=2)
    received_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    status: Optional[ProgressPaymentStatus] = None
    transaction_ids: Optional[List[str]] = None

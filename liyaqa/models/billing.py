"""
Liyaqa - Billing models
Tax invoices with ZATCA (Saudi e-invoicing) compliance fields
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Text, Integer, Date, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liyaqa.database import db
from liyaqa.models.common import generate_id, iso, decimal_str


class InvoiceStatus:
    DRAFT = 'draft'
    ISSUED = 'issued'
    PAID = 'paid'
    OVERDUE = 'overdue'
    CANCELLED = 'cancelled'

    PAYABLE = [ISSUED, OVERDUE]


class ZatcaStatus:
    PENDING = 'pending'
    REPORTED = 'reported'
    FAILED = 'failed'
    SKIPPED = 'skipped'


class DBInvoice(db.Model):
    __tablename__ = 'invoices'
    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'invoice_number', name='uq_invoice_number'),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), ForeignKey('tenants.id'), nullable=False, index=True)
    organization_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    member_id: Mapped[str] = mapped_column(String(50), ForeignKey('members.id'), nullable=False, index=True)
    subscription_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    order_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    invoice_number: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=InvoiceStatus.DRAFT, index=True)
    currency: Mapped[str] = mapped_column(String(3), default='SAR')
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    issue_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # ZATCA
    zatca_uuid: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    zatca_qr_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    zatca_invoice_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    zatca_previous_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    zatca_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    zatca_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    zatca_reported_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    line_items = relationship(
        'DBInvoiceLineItem', cascade='all, delete-orphan',
        order_by='DBInvoiceLineItem.position', lazy='selectin'
    )

    def __init__(self, tenant_id: str, member_id: str, invoice_number: str, **kwargs):
        self.id = generate_id('inv')
        self.tenant_id = tenant_id
        self.member_id = member_id
        self.invoice_number = invoice_number
        self.status = InvoiceStatus.DRAFT
        self.currency = 'SAR'
        self.subtotal = Decimal('0.00')
        self.vat_amount = Decimal('0.00')
        self.total = Decimal('0.00')
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def recalculate(self):
        self.subtotal = sum((item.subtotal for item in self.line_items), Decimal('0.00'))
        self.vat_amount = sum((item.vat_amount for item in self.line_items), Decimal('0.00'))
        self.total = self.subtotal + self.vat_amount

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'organization_id': self.organization_id,
            'member_id': self.member_id,
            'subscription_id': self.subscription_id,
            'order_id': self.order_id,
            'invoice_number': self.invoice_number,
            'status': self.status,
            'currency': self.currency,
            'subtotal': decimal_str(self.subtotal),
            'vat_amount': decimal_str(self.vat_amount),
            'total': decimal_str(self.total),
            'notes': self.notes,
            'line_items': [item.to_dict() for item in self.line_items],
            'issue_date': iso(self.issue_date),
            'due_date': iso(self.due_date),
            'paid_at': iso(self.paid_at),
            'payment_method': self.payment_method,
            'payment_reference': self.payment_reference,
            'cancelled_at': iso(self.cancelled_at),
            'zatca': {
                'uuid': self.zatca_uuid,
                'qr_code': self.zatca_qr_code,
                'invoice_hash': self.zatca_invoice_hash,
                'previous_hash': self.zatca_previous_hash,
                'status': self.zatca_status,
                'error': self.zatca_error,
                'reported_at': iso(self.zatca_reported_at)
            },
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


class DBInvoiceLineItem(db.Model):
    __tablename__ = 'invoice_line_items'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(String(50), ForeignKey('invoices.id'), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    description_ar: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal('15.00'))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    product_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def to_dict(self) -> dict:
        return {
            'description': self.description,
            'description_ar': self.description_ar,
            'quantity': self.quantity,
            'unit_price': decimal_str(self.unit_price),
            'tax_rate': decimal_str(self.tax_rate),
            'subtotal': decimal_str(self.subtotal),
            'vat_amount': decimal_str(self.vat_amount),
            'total': decimal_str(self.total),
            'product_id': self.product_id
        }

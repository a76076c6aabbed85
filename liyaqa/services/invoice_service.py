"""
Liyaqa - Invoice Service
Tax invoices: numbering, VAT, issuing with ZATCA compliance, payment
"""
import logging
from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import List, Optional

from flask import current_app
from sqlalchemy import func

from liyaqa.database import db, commit
from liyaqa.exceptions import ValidationError, NotFoundError
from liyaqa.models import (
    DBInvoice, DBInvoiceLineItem, DBMember, DBOrganization, DBTenant,
    InvoiceStatus, ZatcaStatus,
)
from liyaqa.services.audit_service import audit_service
from liyaqa.services.zatca_service import zatca_service, ZatcaError
from liyaqa.utils import parse_decimal, safe_int, money

logger = logging.getLogger(__name__)


def compute_line(quantity: int, unit_price: Decimal, tax_rate: Decimal) -> dict:
    subtotal = money(Decimal(quantity) * unit_price)
    vat_amount = money(subtotal * tax_rate / Decimal('100'))
    return {'subtotal': subtotal, 'vat_amount': vat_amount, 'total': subtotal + vat_amount}


class InvoiceService:

    def next_invoice_number(self, tenant_id: str, year: int = None) -> str:
        year = year or datetime.utcnow().year
        prefix = f"INV-{year}-"
        last = db.session.query(func.max(DBInvoice.invoice_number)).filter(
            DBInvoice.tenant_id == tenant_id,
            DBInvoice.invoice_number.like(f"{prefix}%")
        ).scalar()
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:05d}"

    def query_invoices(self, tenant_id: str, status: str = None, member_id: str = None):
        query = DBInvoice.query.filter_by(tenant_id=tenant_id)
        if status:
            query = query.filter_by(status=status)
        if member_id:
            query = query.filter_by(member_id=member_id)
        return query.order_by(DBInvoice.created_at.desc())

    def get_invoice(self, tenant_id: str, invoice_id: str) -> DBInvoice:
        invoice = db.session.get(DBInvoice, invoice_id)
        if not invoice or invoice.tenant_id != tenant_id:
            raise NotFoundError('Invoice', invoice_id)
        return invoice

    def create_invoice(self, tenant_id: str, data: dict, actor=None, commit_now: bool = True) -> DBInvoice:
        """
        Create a draft invoice.

        data: member_id, line_items [{description, quantity, unit_price,
        tax_rate?, description_ar?, product_id?}], plus optional
        organization_id, subscription_id, order_id, notes.
        """
        member_id = data.get('member_id')
        if not member_id:
            raise ValidationError('member_id is required')
        member = db.session.get(DBMember, member_id)
        if not member or member.tenant_id != tenant_id:
            raise NotFoundError('Member', member_id)
        items = data.get('line_items')
        if not isinstance(items, list) or not items:
            raise ValidationError('line_items must be a non-empty list')

        default_rate = current_app.config.get('VAT_RATE', '15.00')
        lines = []
        for position, item in enumerate(items):
            if not item.get('description'):
                raise ValidationError(f'line_items[{position}].description is required')
            quantity = safe_int(item.get('quantity', 1), 0)
            if quantity < 1:
                raise ValidationError(f'line_items[{position}].quantity must be at least 1')
            unit_price = parse_decimal(item.get('unit_price'), f'line_items[{position}].unit_price', min_val=0)
            if unit_price is None:
                raise ValidationError(f'line_items[{position}].unit_price is required')
            tax_rate = parse_decimal(item.get('tax_rate'), f'line_items[{position}].tax_rate',
                                     default=default_rate, min_val=0)
            lines.append(DBInvoiceLineItem(
                position=position,
                description=item['description'],
                description_ar=item.get('description_ar'),
                quantity=quantity,
                unit_price=unit_price,
                tax_rate=tax_rate,
                product_id=item.get('product_id'),
                **compute_line(quantity, unit_price, tax_rate)
            ))

        invoice = DBInvoice(
            tenant_id=tenant_id,
            member_id=member.id,
            invoice_number=self.next_invoice_number(tenant_id),
            organization_id=data.get('organization_id'),
            subscription_id=data.get('subscription_id'),
            order_id=data.get('order_id'),
            notes=data.get('notes'),
            currency=current_app.config.get('DEFAULT_CURRENCY', 'SAR'),
            created_by=getattr(actor, 'id', None)
        )
        invoice.line_items.extend(lines)
        invoice.recalculate()
        db.session.add(invoice)
        if commit_now:
            commit()
            audit_service.log_create(audit_service.RESOURCE_INVOICE, invoice.id, invoice.invoice_number,
                                     actor=actor, tenant_id=tenant_id,
                                     new_value={'total': str(invoice.total)})
        return invoice

    def _seller(self, invoice: DBInvoice):
        """(seller name, VAT number) from the invoice organization, else the tenant's first"""
        organization = None
        if invoice.organization_id:
            organization = db.session.get(DBOrganization, invoice.organization_id)
        if not organization:
            organization = DBOrganization.query.filter_by(tenant_id=invoice.tenant_id).order_by(
                DBOrganization.created_at
            ).first()
        if organization:
            invoice.organization_id = organization.id
            return organization.name_ar or organization.name_en, organization.vat_number
        tenant = db.session.get(DBTenant, invoice.tenant_id)
        return (tenant.name_ar or tenant.name) if tenant else None, None

    def issue(self, invoice: DBInvoice, actor=None, due_days: int = None, commit_now: bool = True) -> DBInvoice:
        """
        Issue a draft invoice. ZATCA QR/hash generation and reporting
        failures are recorded on the invoice and never block issuing.
        """
        if invoice.status != InvoiceStatus.DRAFT:
            raise ValidationError(f'Only draft invoices can be issued (invoice is {invoice.status})')
        now = datetime.utcnow()
        due_days = due_days if due_days is not None else current_app.config.get('INVOICE_DUE_DAYS', 7)
        invoice.status = InvoiceStatus.ISSUED
        invoice.issue_date = now
        invoice.due_date = now.date() + timedelta(days=due_days)

        seller_name, vat_number = self._seller(invoice)
        try:
            zatca_service.apply_compliance(invoice, seller_name, vat_number)
        except ZatcaError as e:
            logger.warning(f"ZATCA compliance failed for {invoice.invoice_number}: {e.message}")
            invoice.zatca_status = ZatcaStatus.FAILED
            invoice.zatca_error = e.message

        if not commit_now:
            return invoice
        commit()
        audit_service.log_status_change(audit_service.RESOURCE_INVOICE, invoice.id, invoice.invoice_number,
                                        InvoiceStatus.DRAFT, InvoiceStatus.ISSUED, actor=actor,
                                        tenant_id=invoice.tenant_id)
        self.report(invoice)
        return invoice

    def report(self, invoice: DBInvoice) -> Optional[str]:
        if invoice.zatca_status != ZatcaStatus.PENDING:
            return invoice.zatca_status
        return zatca_service.report_invoice(invoice)

    def pay(self, invoice: DBInvoice, payment_method: str = None, payment_reference: str = None,
            amount=None, actor=None, commit_now: bool = True) -> DBInvoice:
        if invoice.status not in InvoiceStatus.PAYABLE:
            raise ValidationError(f'Invoice is {invoice.status} and cannot be paid')
        if amount is not None:
            paid = parse_decimal(amount, 'amount', min_val=0)
            if paid != money(invoice.total):
                raise ValidationError(f'Payment must cover the full invoice total of {money(invoice.total)}')
        old_status = invoice.status
        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = datetime.utcnow()
        invoice.payment_method = payment_method
        invoice.payment_reference = payment_reference
        if commit_now:
            commit()
            audit_service.log_status_change(audit_service.RESOURCE_INVOICE, invoice.id, invoice.invoice_number,
                                            old_status, InvoiceStatus.PAID, actor=actor,
                                            tenant_id=invoice.tenant_id,
                                            metadata={'payment_method': payment_method})
        return invoice

    def cancel(self, invoice: DBInvoice, actor=None, commit_now: bool = True) -> DBInvoice:
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
            raise ValidationError(f'Invoice is {invoice.status} and cannot be cancelled')
        old_status = invoice.status
        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancelled_at = datetime.utcnow()
        if commit_now:
            commit()
            audit_service.log_status_change(audit_service.RESOURCE_INVOICE, invoice.id, invoice.invoice_number,
                                            old_status, InvoiceStatus.CANCELLED, actor=actor,
                                            tenant_id=invoice.tenant_id)
        return invoice

    def mark_overdue(self, today: date = None) -> int:
        """Issued invoices past their due date become overdue"""
        today = today or date.today()
        invoices = DBInvoice.query.filter(
            DBInvoice.status == InvoiceStatus.ISSUED,
            DBInvoice.due_date < today
        ).all()
        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE
        commit()
        if invoices:
            logger.info(f"Marked {len(invoices)} invoices overdue")
        return len(invoices)

    def summary(self, tenant_id: str) -> dict:
        rows = db.session.query(
            DBInvoice.status, func.count(DBInvoice.id), func.coalesce(func.sum(DBInvoice.total), 0)
        ).filter(DBInvoice.tenant_id == tenant_id).group_by(DBInvoice.status).all()
        by_status = {status: {'count': count, 'total': str(money(total))} for status, count, total in rows}
        return {
            'by_status': by_status,
            'outstanding': str(money(sum(
                (Decimal(str(total)) for status, _, total in rows if status in InvoiceStatus.PAYABLE),
                Decimal('0')
            )))
        }

    def member_invoices(self, tenant_id: str, member_id: str) -> List[DBInvoice]:
        return self.query_invoices(tenant_id, member_id=member_id).all()


invoice_service = InvoiceService()

"""
Liyaqa - ZATCA e-invoicing compliance

Simplified tax invoice QR codes (TLV, base64), chained invoice hashes and
the reporting call to the ZATCA endpoint.
"""
import base64
import hashlib
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

import requests
from flask import current_app

from liyaqa.database import commit
from liyaqa.exceptions import LiyaqaError
from liyaqa.models import DBInvoice, ZatcaStatus

logger = logging.getLogger(__name__)

# Hash chain seed for a tenant's first invoice: base64 of the hex SHA-256 of "0"
INITIAL_PREVIOUS_HASH = base64.b64encode(hashlib.sha256(b'0').hexdigest().encode()).decode()

TAG_SELLER_NAME = 1
TAG_VAT_NUMBER = 2
TAG_TIMESTAMP = 3
TAG_TOTAL_WITH_VAT = 4
TAG_VAT_TOTAL = 5


class ZatcaError(LiyaqaError):
    status_code = 422
    error = 'ZATCA compliance error'


def _tlv(tag: int, value: str) -> bytes:
    encoded = value.encode('utf-8')
    if len(encoded) > 255:
        raise ZatcaError(f'TLV value for tag {tag} exceeds 255 bytes')
    return bytes([tag, len(encoded)]) + encoded


def _amount(value) -> str:
    return str(Decimal(value).quantize(Decimal('0.01')))


class ZatcaService:

    def generate_qr_code(self, seller_name: str, vat_number: str, timestamp: datetime,
                         total_with_vat, vat_total) -> str:
        """Base64 TLV payload rendered into the invoice QR code"""
        if not seller_name:
            raise ZatcaError('Seller name is required for the ZATCA QR code')
        if not vat_number:
            raise ZatcaError('Seller VAT number is required for the ZATCA QR code')
        payload = b''.join([
            _tlv(TAG_SELLER_NAME, seller_name),
            _tlv(TAG_VAT_NUMBER, vat_number),
            _tlv(TAG_TIMESTAMP, timestamp.strftime('%Y-%m-%dT%H:%M:%SZ')),
            _tlv(TAG_TOTAL_WITH_VAT, _amount(total_with_vat)),
            _tlv(TAG_VAT_TOTAL, _amount(vat_total)),
        ])
        return base64.b64encode(payload).decode()

    def decode_qr_code(self, qr_code: str) -> dict:
        """Parse a TLV payload back into {tag: value}"""
        raw = base64.b64decode(qr_code)
        fields = {}
        index = 0
        while index < len(raw):
            tag, length = raw[index], raw[index + 1]
            fields[tag] = raw[index + 2:index + 2 + length].decode('utf-8')
            index += 2 + length
        return fields

    def compute_invoice_hash(self, invoice: DBInvoice, vat_number: str, previous_hash: str) -> str:
        canonical = '|'.join([
            invoice.invoice_number,
            invoice.zatca_uuid or '',
            invoice.issue_date.strftime('%Y-%m-%dT%H:%M:%SZ') if invoice.issue_date else '',
            vat_number or '',
            _amount(invoice.subtotal),
            _amount(invoice.vat_amount),
            _amount(invoice.total),
            previous_hash,
        ])
        return base64.b64encode(hashlib.sha256(canonical.encode('utf-8')).digest()).decode()

    def previous_hash_for(self, invoice: DBInvoice) -> str:
        """Hash of the tenant's most recently issued invoice, or the chain seed"""
        previous = DBInvoice.query.filter(
            DBInvoice.tenant_id == invoice.tenant_id,
            DBInvoice.id != invoice.id,
            DBInvoice.zatca_invoice_hash.isnot(None)
        ).order_by(DBInvoice.issue_date.desc(), DBInvoice.created_at.desc()).first()
        return previous.zatca_invoice_hash if previous else INITIAL_PREVIOUS_HASH

    def apply_compliance(self, invoice: DBInvoice, seller_name: str, vat_number: Optional[str]):
        """Stamp UUID, QR code and chained hash onto an invoice being issued"""
        invoice.zatca_uuid = invoice.zatca_uuid or str(uuid.uuid4())
        invoice.zatca_qr_code = self.generate_qr_code(
            seller_name, vat_number, invoice.issue_date, invoice.total, invoice.vat_amount
        )
        previous_hash = self.previous_hash_for(invoice)
        invoice.zatca_previous_hash = previous_hash
        invoice.zatca_invoice_hash = self.compute_invoice_hash(invoice, vat_number, previous_hash)
        invoice.zatca_status = ZatcaStatus.PENDING
        invoice.zatca_error = None

    def report_invoice(self, invoice: DBInvoice) -> str:
        """Report an issued invoice to ZATCA; returns the resulting zatca_status"""
        if not invoice.zatca_invoice_hash or not invoice.zatca_qr_code:
            # Never stamped; there is nothing ZATCA could accept
            invoice.zatca_status = ZatcaStatus.FAILED
            invoice.zatca_error = invoice.zatca_error or 'Invoice has no ZATCA hash or QR code'
            commit()
            return invoice.zatca_status

        api_url = current_app.config.get('ZATCA_API_URL')
        if not api_url:
            invoice.zatca_status = ZatcaStatus.SKIPPED
            commit()
            return invoice.zatca_status

        payload = {
            'invoiceHash': invoice.zatca_invoice_hash,
            'uuid': invoice.zatca_uuid,
            'invoiceNumber': invoice.invoice_number,
            'issueDate': invoice.issue_date.isoformat() if invoice.issue_date else None,
            'total': _amount(invoice.total),
            'vatAmount': _amount(invoice.vat_amount),
            'qrCode': invoice.zatca_qr_code,
        }
        auth = (current_app.config.get('ZATCA_API_USERNAME', ''), current_app.config.get('ZATCA_API_SECRET', ''))

        try:
            response = requests.post(
                api_url, json=payload, auth=auth,
                headers={'Accept-Version': 'V2', 'Accept-Language': 'en'},
                timeout=current_app.config.get('ZATCA_TIMEOUT', 30)
            )
        except requests.RequestException as e:
            logger.error(f"ZATCA reporting failed for {invoice.invoice_number}: {e}")
            invoice.zatca_status = ZatcaStatus.FAILED
            invoice.zatca_error = str(e)[:1000]
            commit()
            return invoice.zatca_status

        if response.status_code in (200, 202):
            invoice.zatca_status = ZatcaStatus.REPORTED
            invoice.zatca_reported_at = datetime.utcnow()
            invoice.zatca_error = None
            logger.info(f"Reported invoice {invoice.invoice_number} to ZATCA")
        else:
            invoice.zatca_status = ZatcaStatus.FAILED
            invoice.zatca_error = f"HTTP {response.status_code}: {response.text[:500]}"
            logger.warning(f"ZATCA rejected {invoice.invoice_number}: {response.status_code}")
        commit()
        return invoice.zatca_status

    def retry_pending_reports(self, limit: int = 100) -> dict:
        invoices = DBInvoice.query.filter(
            DBInvoice.zatca_status.in_([ZatcaStatus.PENDING, ZatcaStatus.FAILED]),
            DBInvoice.zatca_invoice_hash.isnot(None),
            DBInvoice.zatca_qr_code.isnot(None)
        ).order_by(DBInvoice.issue_date).limit(limit).all()
        results = {}
        for invoice in invoices:
            status = self.report_invoice(invoice)
            results[status] = results.get(status, 0) + 1
        return results


zatca_service = ZatcaService()

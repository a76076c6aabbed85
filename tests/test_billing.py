"""
Liyaqa - Invoice and ZATCA Tests
"""
import base64
from datetime import date, datetime
from decimal import Decimal

import pytest
import requests

from liyaqa.database import db
from liyaqa.models import DBInvoice, InvoiceStatus, ZatcaStatus
from liyaqa.services.invoice_service import compute_line, invoice_service
from liyaqa.services.zatca_service import zatca_service, ZatcaError, INITIAL_PREVIOUS_HASH

from tests.conftest import VAT_NUMBER


def create_invoice(client, headers, member_id, line_items=None):
    res = client.post('/api/invoices', json={
        'member_id': member_id,
        'line_items': line_items or [
            {'description': 'Personal training session', 'quantity': 2, 'unit_price': '100.00'}
        ]
    }, headers=headers)
    assert res.status_code == 201, res.data
    return res.get_json()


class TestLineMath:
    """Test VAT arithmetic"""

    def test_compute_line(self):
        line = compute_line(3, Decimal('99.99'), Decimal('15.00'))
        assert line == {'subtotal': Decimal('299.97'), 'vat_amount': Decimal('45.00'), 'total': Decimal('344.97')}

    def test_zero_rated_line(self):
        line = compute_line(1, Decimal('50.00'), Decimal('0'))
        assert line['vat_amount'] == Decimal('0.00')
        assert line['total'] == Decimal('50.00')


class TestZatcaQrCode:
    """Test the TLV QR payload"""

    def test_encode_decode(self):
        qr = zatca_service.generate_qr_code('وقت اللياقة', VAT_NUMBER, datetime(2026, 10, 18, 9, 30),
                                            Decimal('230'), Decimal('30'))

        assert zatca_service.decode_qr_code(qr) == {
            1: 'وقت اللياقة',
            2: VAT_NUMBER,
            3: '2026-10-18T09:30:00Z',
            4: '230.00',
            5: '30.00',
        }

    def test_tlv_layout(self):
        raw = base64.b64decode(zatca_service.generate_qr_code('Gym', VAT_NUMBER, datetime(2026, 1, 1),
                                                               '115', '15'))
        assert raw[:5] == bytes([1, 3]) + b'Gym'
        assert raw[5:7] == bytes([2, 15])

    def test_seller_and_vat_required(self):
        with pytest.raises(ZatcaError):
            zatca_service.generate_qr_code('', VAT_NUMBER, datetime.utcnow(), '1', '0')
        with pytest.raises(ZatcaError):
            zatca_service.generate_qr_code('Gym', None, datetime.utcnow(), '1', '0')


class TestInvoices:
    """Test the invoice lifecycle"""

    def test_create_draft(self, client, tenant_headers, member):
        invoice = create_invoice(client, tenant_headers, member['id'])

        assert invoice['status'] == InvoiceStatus.DRAFT
        assert invoice['invoice_number'] == f"INV-{datetime.utcnow().year}-00001"
        assert invoice['currency'] == 'SAR'
        assert invoice['subtotal'] == '200.00'
        assert invoice['vat_amount'] == '30.00'
        assert invoice['total'] == '230.00'
        assert invoice['line_items'][0]['tax_rate'] == '15.00'
        assert invoice['zatca']['qr_code'] is None

        second = create_invoice(client, tenant_headers, member['id'])
        assert second['invoice_number'].endswith('-00002')

    def test_validation(self, client, tenant_headers, member):
        bad_bodies = [
            {'line_items': [{'description': 'x', 'unit_price': '1'}]},
            {'member_id': member['id'], 'line_items': []},
            {'member_id': member['id'], 'line_items': [{'unit_price': '1'}]},
            {'member_id': member['id'], 'line_items': [{'description': 'x', 'quantity': 0, 'unit_price': '1'}]},
            {'member_id': member['id'], 'line_items': [{'description': 'x'}]},
            {'member_id': member['id'], 'line_items': [{'description': 'x', 'unit_price': '-5'}]},
        ]
        for body in bad_bodies:
            assert client.post('/api/invoices', json=body, headers=tenant_headers).status_code == 400, body

    def test_issue_stamps_zatca_fields(self, client, tenant_headers, member):
        invoice = create_invoice(client, tenant_headers, member['id'])

        res = client.post(f"/api/invoices/{invoice['id']}/issue", json={'due_days': 14}, headers=tenant_headers)

        assert res.status_code == 200
        issued = res.get_json()
        assert issued['status'] == InvoiceStatus.ISSUED
        assert issued['issue_date'] is not None
        assert issued['zatca']['uuid']
        assert issued['zatca']['invoice_hash']
        assert issued['zatca']['previous_hash'] == INITIAL_PREVIOUS_HASH
        # no reporting endpoint configured under test
        assert issued['zatca']['status'] == ZatcaStatus.SKIPPED

        fields = zatca_service.decode_qr_code(issued['zatca']['qr_code'])
        assert fields[1] == 'وقت اللياقة'
        assert fields[2] == VAT_NUMBER
        assert fields[4] == '230.00'
        assert fields[5] == '30.00'

        res = client.get(f"/api/invoices/{invoice['id']}/zatca", headers=tenant_headers)
        assert res.get_json()['qr_fields']['2'] == VAT_NUMBER

    def test_hash_chain(self, client, tenant_headers, member):
        first = create_invoice(client, tenant_headers, member['id'])
        second = create_invoice(client, tenant_headers, member['id'])

        first = client.post(f"/api/invoices/{first['id']}/issue", headers=tenant_headers).get_json()
        second = client.post(f"/api/invoices/{second['id']}/issue", headers=tenant_headers).get_json()

        assert second['zatca']['previous_hash'] == first['zatca']['invoice_hash']
        assert second['zatca']['invoice_hash'] != first['zatca']['invoice_hash']

    def test_issue_without_vat_number_still_issues(self, client, tenant_headers, tenant, member):
        client.put(f"/api/organizations/{tenant['organization']['id']}", json={'vat_number': None},
                   headers=tenant_headers)
        invoice = create_invoice(client, tenant_headers, member['id'])

        issued = client.post(f"/api/invoices/{invoice['id']}/issue", headers=tenant_headers).get_json()

        assert issued['status'] == InvoiceStatus.ISSUED
        assert issued['zatca']['status'] == ZatcaStatus.FAILED
        assert 'VAT number' in issued['zatca']['error']

    def test_issue_only_drafts(self, client, tenant_headers, member):
        invoice = create_invoice(client, tenant_headers, member['id'])
        client.post(f"/api/invoices/{invoice['id']}/issue", headers=tenant_headers)

        res = client.post(f"/api/invoices/{invoice['id']}/issue", headers=tenant_headers)
        assert res.status_code == 400

    def test_pay(self, client, tenant_headers, member):
        invoice = create_invoice(client, tenant_headers, member['id'])

        # drafts are not payable
        res = client.post(f"/api/invoices/{invoice['id']}/pay", json={'amount': '230.00'}, headers=tenant_headers)
        assert res.status_code == 400

        client.post(f"/api/invoices/{invoice['id']}/issue", headers=tenant_headers)
        res = client.post(f"/api/invoices/{invoice['id']}/pay", json={'amount': '200.00'}, headers=tenant_headers)
        assert res.status_code == 400

        res = client.post(f"/api/invoices/{invoice['id']}/pay", json={
            'payment_method': 'mada', 'payment_reference': 'TXN-8812', 'amount': '230'
        }, headers=tenant_headers)
        assert res.status_code == 200
        paid = res.get_json()
        assert paid['status'] == InvoiceStatus.PAID
        assert paid['payment_method'] == 'mada'
        assert paid['paid_at'] is not None

        res = client.post(f"/api/invoices/{invoice['id']}/cancel", headers=tenant_headers)
        assert res.status_code == 400

    def test_cancel(self, client, tenant_headers, member):
        invoice = create_invoice(client, tenant_headers, member['id'])

        res = client.post(f"/api/invoices/{invoice['id']}/cancel", headers=tenant_headers)
        assert res.get_json()['status'] == InvoiceStatus.CANCELLED

        res = client.post(f"/api/invoices/{invoice['id']}/cancel", headers=tenant_headers)
        assert res.status_code == 400

    def test_summary_and_member_invoices(self, client, tenant_headers, member):
        draft = create_invoice(client, tenant_headers, member['id'])
        issued = create_invoice(client, tenant_headers, member['id'], line_items=[
            {'description': 'Towel', 'quantity': 1, 'unit_price': '20.00'}
        ])
        client.post(f"/api/invoices/{issued['id']}/issue", headers=tenant_headers)

        summary = client.get('/api/invoices/summary', headers=tenant_headers).get_json()
        assert summary['by_status'][InvoiceStatus.DRAFT] == {'count': 1, 'total': draft['total']}
        assert summary['by_status'][InvoiceStatus.ISSUED] == {'count': 1, 'total': '23.00'}
        assert summary['outstanding'] == '23.00'

        res = client.get(f"/api/members/{member['id']}/invoices", headers=tenant_headers)
        assert len(res.get_json()['invoices']) == 2

        res = client.get('/api/invoices?status=issued', headers=tenant_headers)
        assert res.get_json()['total'] == 1

    def test_report_requires_pending_or_failed(self, client, tenant_headers, member):
        invoice = create_invoice(client, tenant_headers, member['id'])
        client.post(f"/api/invoices/{invoice['id']}/issue", headers=tenant_headers)

        res = client.post(f"/api/invoices/{invoice['id']}/zatca/report", headers=tenant_headers)
        assert res.status_code == 400

    def test_mark_overdue(self, app, client, tenant_headers, member):
        invoice = create_invoice(client, tenant_headers, member['id'])
        client.post(f"/api/invoices/{invoice['id']}/issue", json={'due_days': 0}, headers=tenant_headers)

        assert invoice_service.mark_overdue(today=date(2099, 1, 1)) == 1
        res = client.get(f"/api/invoices/{invoice['id']}", headers=tenant_headers)
        assert res.get_json()['status'] == InvoiceStatus.OVERDUE

    def test_unstamped_invoice_is_never_reported(self, app, client, tenant_headers, tenant, member, monkeypatch):
        posted = []

        class Accepted:
            status_code = 200
            text = ''

        def fake_post(url, json=None, **kwargs):
            posted.append(json)
            return Accepted()

        monkeypatch.setattr(requests, 'post', fake_post)
        app.config['ZATCA_API_URL'] = 'https://gw.zatca.example/invoices/reporting/single'

        stamped = create_invoice(client, tenant_headers, member['id'])
        issued = client.post(f"/api/invoices/{stamped['id']}/issue", headers=tenant_headers).get_json()
        assert issued['zatca']['status'] == ZatcaStatus.REPORTED
        assert posted[0]['invoiceHash'] == issued['zatca']['invoice_hash']

        client.put(f"/api/organizations/{tenant['organization']['id']}", json={'vat_number': None},
                   headers=tenant_headers)
        unstamped = create_invoice(client, tenant_headers, member['id'])
        issued = client.post(f"/api/invoices/{unstamped['id']}/issue", headers=tenant_headers).get_json()
        assert issued['zatca']['status'] == ZatcaStatus.FAILED
        assert issued['zatca']['invoice_hash'] is None

        assert zatca_service.retry_pending_reports() == {}
        invoice = db.session.get(DBInvoice, unstamped['id'])
        assert zatca_service.report_invoice(invoice) == ZatcaStatus.FAILED
        assert 'VAT number' in invoice.zatca_error
        assert len(posted) == 1

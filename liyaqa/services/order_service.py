"""
Liyaqa - Order Service

Shop orders move PENDING -> AWAITING_PAYMENT (checkout issues a tax invoice)
-> COMPLETED (payment deducts stock, records single-use purchases and grants
zone access). Orders that are not completed can be cancelled.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List

from sqlalchemy import func, or_

from liyaqa.database import db, commit
from liyaqa.exceptions import ValidationError, NotFoundError
from liyaqa.models import (
    DBOrder, DBOrderItem, DBMember, DBMemberPurchase, DBMemberZoneAccess,
    OrderStatus, InvoiceStatus,
)
from liyaqa.services.audit_service import audit_service
from liyaqa.services.invoice_service import invoice_service
from liyaqa.services.product_service import product_service
from liyaqa.utils import safe_int, money

logger = logging.getLogger(__name__)


class OrderService:

    def next_order_number(self, tenant_id: str, year: int = None) -> str:
        year = year or datetime.utcnow().year
        prefix = f"ORD-{year}-"
        last = db.session.query(func.max(DBOrder.order_number)).filter(
            DBOrder.tenant_id == tenant_id,
            DBOrder.order_number.like(f"{prefix}%")
        ).scalar()
        sequence = int(last[len(prefix):]) + 1 if last else 1
        return f"{prefix}{sequence:05d}"

    def list_orders(self, tenant_id: str, status: str = None, member_id: str = None):
        query = DBOrder.query.filter_by(tenant_id=tenant_id)
        if status:
            query = query.filter_by(status=status)
        if member_id:
            query = query.filter_by(member_id=member_id)
        return query.order_by(DBOrder.created_at.desc())

    def get_order(self, tenant_id: str, order_id: str) -> DBOrder:
        order = db.session.get(DBOrder, order_id)
        if not order or order.tenant_id != tenant_id:
            raise NotFoundError('Order', order_id)
        return order

    def create_order(self, tenant_id: str, data: dict, actor=None) -> DBOrder:
        """data: member_id, items [{product_id, quantity}], optional location_id and notes"""
        member_id = data.get('member_id')
        if not member_id:
            raise ValidationError('member_id is required')
        member = db.session.get(DBMember, member_id)
        if not member or member.tenant_id != tenant_id:
            raise NotFoundError('Member', member_id)
        items = data.get('items')
        if not isinstance(items, list) or not items:
            raise ValidationError('items must be a non-empty list')

        order_items = []
        for position, item in enumerate(items):
            product = product_service.get_product(tenant_id, item.get('product_id'))
            quantity = safe_int(item.get('quantity', 1), 0)
            if quantity < 1:
                raise ValidationError(f'items[{position}].quantity must be at least 1')
            unit_price = money(product.list_price)
            order_items.append(DBOrderItem(
                product_id=product.id,
                product_name=product.name_en,
                quantity=quantity,
                unit_price=unit_price,
                tax_rate=product.tax_rate,
                line_total=money(unit_price * quantity)
            ))

        order = DBOrder(
            tenant_id=tenant_id,
            member_id=member.id,
            order_number=self.next_order_number(tenant_id),
            location_id=data.get('location_id'),
            notes=data.get('notes'),
            created_by=getattr(actor, 'id', None)
        )
        order.items.extend(order_items)
        self._totals(order)
        db.session.add(order)
        commit()
        audit_service.log_create(audit_service.RESOURCE_ORDER, order.id, order.order_number,
                                 actor=actor, tenant_id=tenant_id, new_value={'total': str(order.total)})
        return order

    @staticmethod
    def _totals(order: DBOrder):
        subtotal = Decimal('0.00')
        vat_amount = Decimal('0.00')
        for item in order.items:
            subtotal += item.line_total
            vat_amount += money(item.line_total * Decimal(item.tax_rate or 0) / Decimal('100'))
        order.subtotal = subtotal
        order.vat_amount = vat_amount
        order.total = subtotal + vat_amount

    def _quantities(self, order: DBOrder) -> dict:
        """product -> total quantity on the order"""
        quantities = {}
        for item in order.items:
            product = product_service.get_product(order.tenant_id, item.product_id)
            quantities[product] = quantities.get(product, 0) + item.quantity
        return quantities

    def validate_order(self, order: DBOrder):
        quantities = self._quantities(order)
        for product, quantity in quantities.items():
            product_service.validate_purchase(product, order.member_id, quantity)
        # Bundles and plain lines can draw on the same stock
        needed = {}
        for product, quantity in quantities.items():
            for component, units in product_service.stock_requirements(product, quantity):
                if component.track_inventory:
                    needed[component] = needed.get(component, 0) + units
        for component, units in needed.items():
            if (component.stock_quantity or 0) < units:
                raise ValidationError(
                    f'Insufficient stock for {component.name_en}: {component.stock_quantity} available'
                )
        return quantities, needed

    def checkout(self, order: DBOrder, actor=None) -> DBOrder:
        if order.status != OrderStatus.PENDING:
            raise ValidationError(f'Only pending orders can be checked out (order is {order.status})')
        self.validate_order(order)

        products = {product.id: product for product in self._quantities(order)}
        invoice = invoice_service.create_invoice(order.tenant_id, {
            'member_id': order.member_id,
            'order_id': order.id,
            'notes': f"Order {order.order_number}",
            'line_items': [{
                'description': item.product_name,
                'description_ar': products[item.product_id].name_ar,
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'tax_rate': item.tax_rate,
                'product_id': item.product_id,
            } for item in order.items]
        }, actor=actor, commit_now=False)
        invoice_service.issue(invoice, actor=actor, commit_now=False)
        order.invoice_id = invoice.id
        order.status = OrderStatus.AWAITING_PAYMENT
        commit()

        audit_service.log_status_change(audit_service.RESOURCE_ORDER, order.id, order.order_number,
                                        OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT,
                                        actor=actor, tenant_id=order.tenant_id,
                                        metadata={'invoice_id': invoice.id})
        invoice_service.report(invoice)
        return order

    def pay(self, order: DBOrder, payment_method: str = None, payment_reference: str = None,
            actor=None, now: datetime = None) -> DBOrder:
        if order.status != OrderStatus.AWAITING_PAYMENT:
            raise ValidationError(f'Order is {order.status} and cannot be paid')
        now = now or datetime.utcnow()
        invoice = invoice_service.get_invoice(order.tenant_id, order.invoice_id)
        quantities, needed = self.validate_order(order)

        invoice_service.pay(invoice, payment_method=payment_method, payment_reference=payment_reference,
                            actor=actor, commit_now=False)
        for component, units in needed.items():
            product_service.deduct_stock(component, units, commit_now=False)
        for product, quantity in quantities.items():
            if product.is_single_use:
                db.session.add(DBMemberPurchase(
                    tenant_id=order.tenant_id, member_id=order.member_id, product_id=product.id,
                    order_id=order.id, quantity=quantity, purchased_at=now
                ))
            expires_at = now + timedelta(days=product.access_duration_days) if product.access_duration_days else None
            for zone_id in product.get_zone_access_ids():
                db.session.add(DBMemberZoneAccess(
                    tenant_id=order.tenant_id, member_id=order.member_id, zone_id=zone_id,
                    product_id=product.id, order_id=order.id, granted_at=now, expires_at=expires_at
                ))
        order.status = OrderStatus.COMPLETED
        order.completed_at = now
        commit()

        audit_service.log_status_change(audit_service.RESOURCE_ORDER, order.id, order.order_number,
                                        OrderStatus.AWAITING_PAYMENT, OrderStatus.COMPLETED,
                                        actor=actor, tenant_id=order.tenant_id,
                                        metadata={'payment_method': payment_method})
        logger.info(f"Order {order.order_number} completed")
        return order

    def cancel(self, order: DBOrder, actor=None) -> DBOrder:
        if order.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            raise ValidationError(f'Order is {order.status} and cannot be cancelled')
        old_status = order.status
        if order.invoice_id:
            invoice = invoice_service.get_invoice(order.tenant_id, order.invoice_id)
            if invoice.status != InvoiceStatus.CANCELLED:
                invoice_service.cancel(invoice, actor=actor, commit_now=False)
        order.status = OrderStatus.CANCELLED
        order.cancelled_at = datetime.utcnow()
        commit()
        audit_service.log_status_change(audit_service.RESOURCE_ORDER, order.id, order.order_number,
                                        old_status, OrderStatus.CANCELLED, actor=actor,
                                        tenant_id=order.tenant_id)
        return order

    # ---------- member access ----------

    def member_access(self, tenant_id: str, member_id: str, now: datetime = None) -> List[DBMemberZoneAccess]:
        now = now or datetime.utcnow()
        return DBMemberZoneAccess.query.filter(
            DBMemberZoneAccess.tenant_id == tenant_id,
            DBMemberZoneAccess.member_id == member_id,
            or_(DBMemberZoneAccess.expires_at.is_(None), DBMemberZoneAccess.expires_at > now)
        ).order_by(DBMemberZoneAccess.granted_at.desc()).all()

    def has_zone_access(self, tenant_id: str, member_id: str, zone_id: str, now: datetime = None) -> bool:
        return any(grant.zone_id == zone_id for grant in self.member_access(tenant_id, member_id, now))

    def member_purchases(self, tenant_id: str, member_id: str) -> List[DBMemberPurchase]:
        return DBMemberPurchase.query.filter_by(tenant_id=tenant_id, member_id=member_id).order_by(
            DBMemberPurchase.purchased_at.desc()
        ).all()


order_service = OrderService()

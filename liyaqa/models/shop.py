"""
Liyaqa - Shop / POS models
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import json

from sqlalchemy import String, Text, Integer, Boolean, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liyaqa.database import db
from liyaqa.models.common import generate_id, safe_json_loads, iso, decimal_str


class ProductType:
    GOODS = 'goods'
    SERVICE = 'service'
    BUNDLE = 'bundle'

    ALL = [GOODS, SERVICE, BUNDLE]


class ProductStatus:
    DRAFT = 'draft'
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    DISCONTINUED = 'discontinued'


class Department:
    FRONT_DESK = 'front_desk'
    PRO_SHOP = 'pro_shop'
    CAFE = 'cafe'
    SPA = 'spa'
    PERSONAL_TRAINING = 'personal_training'
    OTHER = 'other'

    ALL = [FRONT_DESK, PRO_SHOP, CAFE, SPA, PERSONAL_TRAINING, OTHER]


class OrderStatus:
    PENDING = 'pending'
    AWAITING_PAYMENT = 'awaiting_payment'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class DBProductCategory(db.Model):
    __tablename__ = 'product_categories'

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name_en: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    department: Mapped[str] = mapped_column(String(30), default=Department.OTHER)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def __init__(self, tenant_id: str, name_en: str, **kwargs):
        self.id = generate_id('cat')
        self.tenant_id = tenant_id
        self.name_en = name_en
        self.department = Department.OTHER
        self.sort_order = 0
        self.is_active = True
        self.created_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name_en': self.name_en,
            'name_ar': self.name_ar,
            'department': self.department,
            'sort_order': self.sort_order,
            'is_active': self.is_active,
            'created_at': iso(self.created_at)
        }


class DBProduct(db.Model):
    __tablename__ = 'products'
    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'sku', name='uq_product_sku'),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    category_id: Mapped[Optional[str]] = mapped_column(String(50), ForeignKey('product_categories.id'), nullable=True, index=True)

    name_en: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description_en: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description_ar: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    product_type: Mapped[str] = mapped_column(String(20), default=ProductType.GOODS)
    status: Mapped[str] = mapped_column(String(20), default=ProductStatus.DRAFT, index=True)

    list_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    currency: Mapped[str] = mapped_column(String(3), default='SAR')
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal('15.00'))

    track_inventory: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=5)

    zone_access_ids: Mapped[str] = mapped_column(Text, default='[]')  # JSON array of location/zone ids
    access_duration_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_single_use: Mapped[bool] = mapped_column(Boolean, default=False)
    max_quantity_per_order: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bundle_items = relationship(
        'DBBundleItem', cascade='all, delete-orphan',
        foreign_keys='DBBundleItem.bundle_id', lazy='selectin'
    )

    def __init__(self, tenant_id: str, name_en: str, **kwargs):
        self.id = generate_id('prod')
        self.tenant_id = tenant_id
        self.name_en = name_en
        self.product_type = ProductType.GOODS
        self.status = ProductStatus.DRAFT
        self.list_price = Decimal('0.00')
        self.currency = 'SAR'
        self.tax_rate = Decimal('15.00')
        self.track_inventory = False
        self.stock_quantity = 0
        self.low_stock_threshold = 5
        self.zone_access_ids = '[]'
        self.is_single_use = False
        self.sort_order = 0
        self.created_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()
        zones = kwargs.pop('zone_access_ids', None)
        if zones is not None:
            self.set_zone_access_ids(zones)
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def get_zone_access_ids(self) -> List[str]:
        return safe_json_loads(self.zone_access_ids, [])

    def set_zone_access_ids(self, zone_ids: List[str]):
        self.zone_access_ids = json.dumps(list(zone_ids or []))

    @property
    def is_bundle(self) -> bool:
        return self.product_type == ProductType.BUNDLE

    @property
    def is_available(self) -> bool:
        if self.status != ProductStatus.ACTIVE:
            return False
        return not self.track_inventory or self.stock_quantity > 0

    @property
    def is_low_stock(self) -> bool:
        return self.track_inventory and self.stock_quantity <= (self.low_stock_threshold or 0)

    @property
    def price_with_tax(self) -> Decimal:
        price = Decimal(self.list_price or 0)
        return (price + price * Decimal(self.tax_rate or 0) / Decimal('100')).quantize(Decimal('0.01'))

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'category_id': self.category_id,
            'name_en': self.name_en,
            'name_ar': self.name_ar,
            'description_en': self.description_en,
            'description_ar': self.description_ar,
            'sku': self.sku,
            'product_type': self.product_type,
            'status': self.status,
            'list_price': decimal_str(self.list_price),
            'price_with_tax': decimal_str(self.price_with_tax),
            'currency': self.currency,
            'tax_rate': decimal_str(self.tax_rate),
            'track_inventory': self.track_inventory,
            'stock_quantity': self.stock_quantity,
            'low_stock_threshold': self.low_stock_threshold,
            'is_low_stock': self.is_low_stock,
            'is_available': self.is_available,
            'zone_access_ids': self.get_zone_access_ids(),
            'access_duration_days': self.access_duration_days,
            'is_single_use': self.is_single_use,
            'max_quantity_per_order': self.max_quantity_per_order,
            'sort_order': self.sort_order,
            'bundle_items': [item.to_dict() for item in self.bundle_items],
            'created_at': iso(self.created_at),
            'updated_at': iso(self.updated_at)
        }


class DBBundleItem(db.Model):
    __tablename__ = 'product_bundle_items'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bundle_id: Mapped[str] = mapped_column(String(50), ForeignKey('products.id'), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(50), ForeignKey('products.id'), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    def to_dict(self) -> dict:
        return {'product_id': self.product_id, 'quantity': self.quantity}


class DBOrder(db.Model):
    __tablename__ = 'orders'
    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'order_number', name='uq_order_number'),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    member_id: Mapped[str] = mapped_column(String(50), ForeignKey('members.id'), nullable=False, index=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    order_number: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING, index=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    vat_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))
    invoice_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    items = relationship(
        'DBOrderItem', cascade='all, delete-orphan',
        order_by='DBOrderItem.id', lazy='selectin'
    )

    def __init__(self, tenant_id: str, member_id: str, order_number: str, **kwargs):
        self.id = generate_id('order')
        self.tenant_id = tenant_id
        self.member_id = member_id
        self.order_number = order_number
        self.status = OrderStatus.PENDING
        self.subtotal = Decimal('0.00')
        self.vat_amount = Decimal('0.00')
        self.total = Decimal('0.00')
        self.created_at = datetime.utcnow()
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'member_id': self.member_id,
            'location_id': self.location_id,
            'order_number': self.order_number,
            'status': self.status,
            'subtotal': decimal_str(self.subtotal),
            'vat_amount': decimal_str(self.vat_amount),
            'total': decimal_str(self.total),
            'invoice_id': self.invoice_id,
            'notes': self.notes,
            'items': [item.to_dict() for item in self.items],
            'created_at': iso(self.created_at),
            'completed_at': iso(self.completed_at),
            'cancelled_at': iso(self.cancelled_at)
        }


class DBOrderItem(db.Model):
    __tablename__ = 'order_items'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(50), ForeignKey('orders.id'), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(50), ForeignKey('products.id'), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal('15.00'))
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal('0.00'))

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'unit_price': decimal_str(self.unit_price),
            'tax_rate': decimal_str(self.tax_rate),
            'line_total': decimal_str(self.line_total)
        }


class DBMemberPurchase(db.Model):
    """Record of a member buying a single-use product"""
    __tablename__ = 'member_purchases'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    member_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    order_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    purchased_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class DBMemberZoneAccess(db.Model):
    """Zone access granted to a member by buying a product"""
    __tablename__ = 'member_zone_access'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    member_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    zone_id: Mapped[str] = mapped_column(String(50), nullable=False)
    product_id: Mapped[str] = mapped_column(String(50), nullable=False)
    order_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    granted_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def is_valid(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        return self.expires_at is None or self.expires_at > now

    def to_dict(self) -> dict:
        return {
            'member_id': self.member_id,
            'zone_id': self.zone_id,
            'product_id': self.product_id,
            'order_id': self.order_id,
            'granted_at': iso(self.granted_at),
            'expires_at': iso(self.expires_at)
        }

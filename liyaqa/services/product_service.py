"""
Liyaqa - Product Service
Shop catalogue: categories, products, bundles and inventory
"""
import logging
from typing import List

from sqlalchemy import or_, func

from liyaqa.database import db, save, commit
from liyaqa.exceptions import ValidationError, NotFoundError, ConflictError
from liyaqa.models import (
    DBProductCategory, DBProduct, DBBundleItem, DBMemberPurchase, DBOrderItem,
    ProductType, ProductStatus, Department,
)
from liyaqa.services.audit_service import audit_service
from liyaqa.utils import parse_decimal, safe_int, safe_bool

logger = logging.getLogger(__name__)

CATEGORY_FIELDS = ['name_en', 'name_ar', 'department', 'sort_order', 'is_active']
PRODUCT_FIELDS = ['name_en', 'name_ar', 'description_en', 'description_ar', 'sku', 'category_id',
                  'product_type', 'currency', 'track_inventory', 'low_stock_threshold',
                  'access_duration_days', 'is_single_use', 'max_quantity_per_order', 'sort_order']

# status -> statuses it may move to
PRODUCT_TRANSITIONS = {
    ProductStatus.DRAFT: [ProductStatus.ACTIVE, ProductStatus.DISCONTINUED],
    ProductStatus.ACTIVE: [ProductStatus.INACTIVE, ProductStatus.DISCONTINUED],
    ProductStatus.INACTIVE: [ProductStatus.ACTIVE, ProductStatus.DISCONTINUED],
    ProductStatus.DISCONTINUED: [],
}


class ProductService:

    # ---------- categories ----------

    def list_categories(self, tenant_id: str, department: str = None, active_only: bool = False):
        query = DBProductCategory.query.filter_by(tenant_id=tenant_id)
        if department:
            query = query.filter_by(department=department)
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(DBProductCategory.sort_order, DBProductCategory.name_en)

    def get_category(self, tenant_id: str, category_id: str) -> DBProductCategory:
        category = db.session.get(DBProductCategory, category_id)
        if not category or category.tenant_id != tenant_id:
            raise NotFoundError('Category', category_id)
        return category

    def create_category(self, tenant_id: str, data: dict, actor=None) -> DBProductCategory:
        if not data.get('name_en'):
            raise ValidationError('name_en is required')
        self._validate_category(data)
        category = DBProductCategory(tenant_id=tenant_id, name_en=data['name_en'])
        self._apply_category(category, data)
        save(category)
        logger.info(f"Created product category {category.id} for tenant {tenant_id}")
        return category

    def update_category(self, category: DBProductCategory, data: dict, actor=None) -> DBProductCategory:
        self._validate_category(data)
        self._apply_category(category, data)
        commit()
        return category

    def delete_category(self, category: DBProductCategory, actor=None):
        if DBProduct.query.filter_by(category_id=category.id).count():
            raise ConflictError('Category still has products; move or delete them first')
        db.session.delete(category)
        commit()

    @staticmethod
    def _validate_category(data: dict):
        if 'department' in data and data['department'] not in Department.ALL:
            raise ValidationError(f"department must be one of: {', '.join(Department.ALL)}")

    @staticmethod
    def _apply_category(category: DBProductCategory, data: dict):
        for field in CATEGORY_FIELDS:
            if field not in data:
                continue
            value = data[field]
            if field == 'sort_order':
                value = safe_int(value, 0)
            elif field == 'is_active':
                value = safe_bool(value, True)
            setattr(category, field, value)

    # ---------- products ----------

    def list_products(self, tenant_id: str, status: str = None, product_type: str = None,
                      category_id: str = None, search: str = None, low_stock: bool = False):
        query = DBProduct.query.filter_by(tenant_id=tenant_id)
        if status:
            query = query.filter_by(status=status)
        if product_type:
            query = query.filter_by(product_type=product_type)
        if category_id:
            query = query.filter_by(category_id=category_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                DBProduct.name_en.ilike(pattern),
                DBProduct.name_ar.ilike(pattern),
                DBProduct.sku.ilike(pattern)
            ))
        if low_stock:
            query = query.filter(
                DBProduct.track_inventory.is_(True),
                DBProduct.stock_quantity <= DBProduct.low_stock_threshold
            )
        return query.order_by(DBProduct.sort_order, DBProduct.name_en)

    def get_product(self, tenant_id: str, product_id: str) -> DBProduct:
        product = db.session.get(DBProduct, product_id)
        if not product or product.tenant_id != tenant_id:
            raise NotFoundError('Product', product_id)
        return product

    def create_product(self, tenant_id: str, data: dict, actor=None) -> DBProduct:
        if not data.get('name_en'):
            raise ValidationError('name_en is required')
        data = dict(data)
        data.setdefault('product_type', ProductType.GOODS)
        values = self._validated(tenant_id, data)
        bundle_items = self._validated_bundle_items(tenant_id, data) if data['product_type'] == ProductType.BUNDLE else []

        product = DBProduct(tenant_id=tenant_id, name_en=data['name_en'])
        self._apply(product, values)
        product.bundle_items.extend(bundle_items)
        save(product)
        audit_service.log_create(audit_service.RESOURCE_PRODUCT, product.id, product.name_en,
                                 actor=actor, tenant_id=tenant_id)
        return product

    def update_product(self, product: DBProduct, data: dict, actor=None) -> DBProduct:
        if product.status == ProductStatus.DISCONTINUED:
            raise ValidationError('Discontinued products cannot be edited')
        if 'product_type' in data and data['product_type'] != product.product_type:
            raise ValidationError('product_type cannot be changed')
        values = self._validated(product.tenant_id, data, product=product)
        bundle_items = None
        if product.is_bundle and 'bundle_items' in data:
            bundle_items = self._validated_bundle_items(product.tenant_id, data, bundle_id=product.id)

        self._apply(product, values)
        if bundle_items is not None:
            product.bundle_items.clear()
            product.bundle_items.extend(bundle_items)
        commit()
        audit_service.log_update(audit_service.RESOURCE_PRODUCT, product.id, product.name_en,
                                 actor=actor, tenant_id=product.tenant_id)
        return product

    def delete_product(self, product: DBProduct, actor=None):
        if product.status != ProductStatus.DRAFT:
            raise ValidationError('Only draft products can be deleted; discontinue it instead')
        if DBOrderItem.query.filter_by(product_id=product.id).count():
            raise ConflictError('Product has orders; discontinue it instead')
        if DBBundleItem.query.filter_by(product_id=product.id).count():
            raise ConflictError('Product is part of a bundle')
        db.session.delete(product)
        commit()
        audit_service.log_delete(audit_service.RESOURCE_PRODUCT, product.id, product.name_en,
                                 actor=actor, tenant_id=product.tenant_id)

    def _validated(self, tenant_id: str, data: dict, product: DBProduct = None) -> dict:
        """Check a create/update payload and return the values to apply"""
        values = {field: data[field] for field in PRODUCT_FIELDS if field in data}

        if 'product_type' in values and values['product_type'] not in ProductType.ALL:
            raise ValidationError(f"product_type must be one of: {', '.join(ProductType.ALL)}")
        if 'name_en' in values and not values['name_en']:
            raise ValidationError('name_en cannot be empty')
        if values.get('category_id'):
            self.get_category(tenant_id, values['category_id'])
        if values.get('sku'):
            existing = DBProduct.query.filter_by(tenant_id=tenant_id, sku=values['sku']).first()
            if existing and (product is None or existing.id != product.id):
                raise ConflictError(f"SKU {values['sku']} is already in use")

        if 'list_price' in data:
            values['list_price'] = parse_decimal(data['list_price'], 'list_price', min_val=0)
        if 'tax_rate' in data:
            values['tax_rate'] = parse_decimal(data['tax_rate'], 'tax_rate', default='15.00', min_val=0)
            if values['tax_rate'] > 100:
                raise ValidationError('tax_rate cannot exceed 100')

        for field in ('low_stock_threshold', 'sort_order'):
            if field in values:
                values[field] = safe_int(values[field], 0, min_val=0)
        for field in ('access_duration_days', 'max_quantity_per_order'):
            if field in values and values[field] is not None:
                number = safe_int(values[field], 0)
                if number < 1:
                    raise ValidationError(f'{field} must be at least 1')
                values[field] = number
        for field in ('track_inventory', 'is_single_use'):
            if field in values:
                values[field] = safe_bool(values[field])

        if 'stock_quantity' in data:
            stock = safe_int(data['stock_quantity'], -1)
            if stock < 0:
                raise ValidationError('stock_quantity cannot be negative')
            values['stock_quantity'] = stock
        if 'zone_access_ids' in data:
            zones = data['zone_access_ids'] or []
            if not isinstance(zones, list):
                raise ValidationError('zone_access_ids must be a list')
            values['zone_access_ids'] = zones
        return values

    def _validated_bundle_items(self, tenant_id: str, data: dict, bundle_id: str = None) -> List[DBBundleItem]:
        items = data.get('bundle_items') or []
        if not isinstance(items, list) or not items:
            raise ValidationError('A bundle needs at least one bundle item')
        bundle_items = []
        for item in items:
            component = self.get_product(tenant_id, item.get('product_id'))
            if component.is_bundle:
                raise ValidationError('Bundles cannot contain other bundles')
            if bundle_id and component.id == bundle_id:
                raise ValidationError('A bundle cannot contain itself')
            quantity = safe_int(item.get('quantity', 1), 0)
            if quantity < 1:
                raise ValidationError('Bundle item quantity must be at least 1')
            bundle_items.append(DBBundleItem(product_id=component.id, quantity=quantity))
        return bundle_items

    @staticmethod
    def _apply(product: DBProduct, values: dict):
        for field, value in values.items():
            if field == 'zone_access_ids':
                product.set_zone_access_ids(value)
            else:
                setattr(product, field, value)

    # ---------- status ----------

    def change_status(self, product: DBProduct, new_status: str, actor=None) -> DBProduct:
        if new_status not in PRODUCT_TRANSITIONS.get(product.status, []):
            raise ValidationError(f'Cannot change product status from {product.status} to {new_status}')
        if new_status == ProductStatus.ACTIVE and product.is_bundle and not product.bundle_items:
            raise ValidationError('A bundle needs at least one bundle item')
        old_status = product.status
        product.status = new_status
        commit()
        audit_service.log_status_change(audit_service.RESOURCE_PRODUCT, product.id, product.name_en,
                                        old_status, new_status, actor=actor, tenant_id=product.tenant_id)
        return product

    def publish(self, product: DBProduct, actor=None) -> DBProduct:
        if product.status != ProductStatus.DRAFT:
            raise ValidationError('Only draft products can be published')
        return self.change_status(product, ProductStatus.ACTIVE, actor)

    def activate(self, product: DBProduct, actor=None) -> DBProduct:
        return self.change_status(product, ProductStatus.ACTIVE, actor)

    def deactivate(self, product: DBProduct, actor=None) -> DBProduct:
        return self.change_status(product, ProductStatus.INACTIVE, actor)

    def discontinue(self, product: DBProduct, actor=None) -> DBProduct:
        return self.change_status(product, ProductStatus.DISCONTINUED, actor)

    # ---------- inventory ----------

    def add_stock(self, product: DBProduct, quantity, actor=None) -> DBProduct:
        quantity = self._stock_quantity(product, quantity)
        product.stock_quantity = (product.stock_quantity or 0) + quantity
        commit()
        logger.info(f"Stock of {product.id} increased by {quantity} to {product.stock_quantity}")
        return product

    def deduct_stock(self, product: DBProduct, quantity, actor=None, commit_now: bool = True) -> DBProduct:
        quantity = self._stock_quantity(product, quantity)
        if (product.stock_quantity or 0) < quantity:
            raise ValidationError(f'Insufficient stock for {product.name_en}: {product.stock_quantity} available')
        product.stock_quantity -= quantity
        if commit_now:
            commit()
        if product.is_low_stock:
            logger.warning(f"Product {product.id} is low on stock ({product.stock_quantity} left)")
        return product

    @staticmethod
    def _stock_quantity(product: DBProduct, quantity) -> int:
        if not product.track_inventory:
            raise ValidationError('Inventory is not tracked for this product')
        quantity = safe_int(quantity, 0)
        if quantity <= 0:
            raise ValidationError('quantity must be greater than zero')
        return quantity

    def stats(self, tenant_id: str) -> dict:
        by_status = dict(
            db.session.query(DBProduct.status, func.count(DBProduct.id)).filter(
                DBProduct.tenant_id == tenant_id
            ).group_by(DBProduct.status).all()
        )
        by_type = dict(
            db.session.query(DBProduct.product_type, func.count(DBProduct.id)).filter(
                DBProduct.tenant_id == tenant_id
            ).group_by(DBProduct.product_type).all()
        )
        low_stock = self.list_products(tenant_id, low_stock=True).filter(
            DBProduct.status != ProductStatus.DISCONTINUED
        ).count()
        return {
            'total': sum(by_status.values()),
            'by_status': {status: by_status.get(status, 0) for status in PRODUCT_TRANSITIONS},
            'by_type': {product_type: by_type.get(product_type, 0) for product_type in ProductType.ALL},
            'low_stock': low_stock,
            'categories': DBProductCategory.query.filter_by(tenant_id=tenant_id).count(),
        }

    # ---------- purchase rules ----------

    def validate_purchase(self, product: DBProduct, member_id: str, quantity: int):
        """Raise ValidationError if the member cannot buy `quantity` of the product"""
        if product.status != ProductStatus.ACTIVE:
            raise ValidationError(f'{product.name_en} is not available for sale')
        if quantity < 1:
            raise ValidationError('quantity must be at least 1')
        if product.max_quantity_per_order and quantity > product.max_quantity_per_order:
            raise ValidationError(
                f'At most {product.max_quantity_per_order} of {product.name_en} can be ordered at once'
            )
        if product.is_single_use:
            if quantity > 1:
                raise ValidationError(f'{product.name_en} can only be bought once')
            already = DBMemberPurchase.query.filter_by(
                tenant_id=product.tenant_id, member_id=member_id, product_id=product.id
            ).count()
            if already:
                raise ValidationError(f'Member has already bought {product.name_en}')
        for component, needed in self.stock_requirements(product, quantity):
            if component.track_inventory and (component.stock_quantity or 0) < needed:
                raise ValidationError(
                    f'Insufficient stock for {component.name_en}: {component.stock_quantity} available'
                )

    def stock_requirements(self, product: DBProduct, quantity: int):
        """(product, units) pairs whose stock a sale consumes; bundles consume their components"""
        if not product.is_bundle:
            return [(product, quantity)]
        requirements = []
        for item in product.bundle_items:
            component = db.session.get(DBProduct, item.product_id)
            if component:
                requirements.append((component, item.quantity * quantity))
        return requirements


product_service = ProductService()

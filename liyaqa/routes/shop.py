"""
Liyaqa - Shop Routes
Product catalog, inventory and member orders
"""
from flask import Blueprint, request, jsonify

from liyaqa.models import Permission
from liyaqa.routes.auth import permission_required, resolve_tenant_id
from liyaqa.services.product_service import product_service
from liyaqa.services.order_service import order_service
from liyaqa.utils import paginate, safe_bool

shop_bp = Blueprint('shop', __name__)

STATUS_ACTIONS = {
    'publish': product_service.publish,
    'activate': product_service.activate,
    'deactivate': product_service.deactivate,
    'discontinue': product_service.discontinue,
}


# ==========================================
# Categories
# ==========================================

@shop_bp.route('/categories', methods=['GET'])
@permission_required(Permission.SHOP_VIEW)
def list_categories(current_user):
    tenant_id = resolve_tenant_id(current_user)
    query = product_service.list_categories(
        tenant_id,
        department=request.args.get('department'),
        active_only=safe_bool(request.args.get('active_only'))
    )
    return jsonify({'categories': [category.to_dict() for category in query.all()]})


@shop_bp.route('/categories', methods=['POST'])
@permission_required(Permission.SHOP_MANAGE)
def create_category(current_user):
    """
    POST /api/shop/categories
    {"name_en": "Supplements", "name_ar": "مكملات", "department": "nutrition"}
    """
    tenant_id = resolve_tenant_id(current_user)
    category = product_service.create_category(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(category.to_dict()), 201


@shop_bp.route('/categories/<category_id>', methods=['PUT'])
@permission_required(Permission.SHOP_MANAGE)
def update_category(current_user, category_id):
    tenant_id = resolve_tenant_id(current_user)
    category = product_service.update_category(product_service.get_category(tenant_id, category_id),
                                               request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(category.to_dict())


@shop_bp.route('/categories/<category_id>', methods=['DELETE'])
@permission_required(Permission.SHOP_MANAGE)
def delete_category(current_user, category_id):
    tenant_id = resolve_tenant_id(current_user)
    product_service.delete_category(product_service.get_category(tenant_id, category_id), actor=current_user)
    return jsonify({'message': 'Category deleted'})


# ==========================================
# Products
# ==========================================

@shop_bp.route('/products', methods=['GET'])
@permission_required(Permission.SHOP_VIEW)
def list_products(current_user):
    """GET /api/shop/products?status=active&product_type=goods&category_id=...&search=&low_stock=true"""
    tenant_id = resolve_tenant_id(current_user)
    query = product_service.list_products(
        tenant_id,
        status=request.args.get('status'),
        product_type=request.args.get('product_type'),
        category_id=request.args.get('category_id'),
        search=request.args.get('search'),
        low_stock=safe_bool(request.args.get('low_stock'))
    )
    return jsonify(paginate(query, request, key='products'))


@shop_bp.route('/products', methods=['POST'])
@permission_required(Permission.SHOP_MANAGE)
def create_product(current_user):
    tenant_id = resolve_tenant_id(current_user)
    product = product_service.create_product(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(product.to_dict()), 201


@shop_bp.route('/products/stats', methods=['GET'])
@permission_required(Permission.SHOP_VIEW)
def product_stats(current_user):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(product_service.stats(tenant_id))


@shop_bp.route('/products/<product_id>', methods=['GET'])
@permission_required(Permission.SHOP_VIEW)
def get_product(current_user, product_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(product_service.get_product(tenant_id, product_id).to_dict())


@shop_bp.route('/products/<product_id>', methods=['PUT'])
@permission_required(Permission.SHOP_MANAGE)
def update_product(current_user, product_id):
    tenant_id = resolve_tenant_id(current_user)
    product = product_service.update_product(product_service.get_product(tenant_id, product_id),
                                             request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(product.to_dict())


@shop_bp.route('/products/<product_id>', methods=['DELETE'])
@permission_required(Permission.SHOP_MANAGE)
def delete_product(current_user, product_id):
    tenant_id = resolve_tenant_id(current_user)
    product_service.delete_product(product_service.get_product(tenant_id, product_id), actor=current_user)
    return jsonify({'message': 'Product deleted'})


@shop_bp.route('/products/<product_id>/<action>', methods=['POST'])
@permission_required(Permission.SHOP_MANAGE)
def change_product_status(current_user, product_id, action):
    """POST /api/shop/products/<id>/{publish|activate|deactivate|discontinue}"""
    if action not in STATUS_ACTIONS:
        return jsonify({'error': f'Unknown action: {action}'}), 404
    tenant_id = resolve_tenant_id(current_user)
    product = STATUS_ACTIONS[action](product_service.get_product(tenant_id, product_id), actor=current_user)
    return jsonify(product.to_dict())


@shop_bp.route('/products/<product_id>/stock', methods=['POST'])
@permission_required(Permission.SHOP_MANAGE)
def adjust_stock(current_user, product_id):
    """
    POST /api/shop/products/<id>/stock
    {"operation": "add", "quantity": 20}    operation is add or deduct
    """
    tenant_id = resolve_tenant_id(current_user)
    product = product_service.get_product(tenant_id, product_id)
    data = request.get_json(silent=True) or {}
    operation = data.get('operation', 'add')
    if operation == 'add':
        product = product_service.add_stock(product, data.get('quantity'), actor=current_user)
    elif operation == 'deduct':
        product = product_service.deduct_stock(product, data.get('quantity'), actor=current_user)
    else:
        return jsonify({'error': 'operation must be add or deduct'}), 400
    return jsonify(product.to_dict())


# ==========================================
# Orders
# ==========================================

@shop_bp.route('/orders', methods=['GET'])
@permission_required(Permission.SHOP_VIEW)
def list_orders(current_user):
    tenant_id = resolve_tenant_id(current_user)
    query = order_service.list_orders(
        tenant_id,
        status=request.args.get('status'),
        member_id=request.args.get('member_id')
    )
    return jsonify(paginate(query, request, key='orders'))


@shop_bp.route('/orders', methods=['POST'])
@permission_required(Permission.SHOP_MANAGE)
def create_order(current_user):
    """
    POST /api/shop/orders
    {"member_id": "mem_...", "items": [{"product_id": "prod_...", "quantity": 2}]}
    """
    tenant_id = resolve_tenant_id(current_user)
    order = order_service.create_order(tenant_id, request.get_json(silent=True) or {}, actor=current_user)
    return jsonify(order.to_dict()), 201


@shop_bp.route('/orders/<order_id>', methods=['GET'])
@permission_required(Permission.SHOP_VIEW)
def get_order(current_user, order_id):
    tenant_id = resolve_tenant_id(current_user)
    return jsonify(order_service.get_order(tenant_id, order_id).to_dict())


@shop_bp.route('/orders/<order_id>/checkout', methods=['POST'])
@permission_required(Permission.SHOP_MANAGE)
def checkout_order(current_user, order_id):
    """Validates the order and issues its invoice"""
    tenant_id = resolve_tenant_id(current_user)
    order = order_service.checkout(order_service.get_order(tenant_id, order_id), actor=current_user)
    return jsonify(order.to_dict())


@shop_bp.route('/orders/<order_id>/pay', methods=['POST'])
@permission_required(Permission.SHOP_MANAGE)
def pay_order(current_user, order_id):
    tenant_id = resolve_tenant_id(current_user)
    data = request.get_json(silent=True) or {}
    order = order_service.pay(
        order_service.get_order(tenant_id, order_id),
        payment_method=data.get('payment_method'),
        payment_reference=data.get('payment_reference'),
        actor=current_user
    )
    return jsonify(order.to_dict())


@shop_bp.route('/orders/<order_id>/cancel', methods=['POST'])
@permission_required(Permission.SHOP_MANAGE)
def cancel_order(current_user, order_id):
    tenant_id = resolve_tenant_id(current_user)
    order = order_service.cancel(order_service.get_order(tenant_id, order_id), actor=current_user)
    return jsonify(order.to_dict())

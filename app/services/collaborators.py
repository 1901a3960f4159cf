"""Order and catalog lookups the grant services depend on."""

from app import db
from app.models import Order, Product
from app.services.grants.errors import NotAuthorized, InvalidResource
from app.utils import messages

PAYMENT_COMPLETED = 'completed'


def find_completed_purchase(owner_id: int, resource_id: int, purchase_id: int) -> Order:
    """Order ``purchase_id`` if it belongs to the owner, is paid and contains the resource."""
    order = db.session.get(Order, purchase_id) if purchase_id is not None else None
    if order is None or order.user_id != owner_id or order.payment_status != PAYMENT_COMPLETED:
        raise NotAuthorized(messages.PURCHASE_NOT_AUTHORIZED)
    if not order.includes_product(resource_id):
        raise NotAuthorized(messages.RESOURCE_NOT_DIGITAL)
    return order


def find_resource(resource_id: int) -> Product:
    product = db.session.get(Product, resource_id) if resource_id is not None else None
    if product is None or not product.is_active:
        raise InvalidResource(messages.ERROR_NOT_FOUND % {'item': 'Product'})
    return product

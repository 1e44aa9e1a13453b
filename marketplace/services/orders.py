import logging
import uuid

from marketplace.errors import InvalidInput, InvalidState
from marketplace.models import Order, OrderItem, Product, Transaction, User
from marketplace.models.commission import CommissionStatus
from marketplace.models.order import OrderStatus
from marketplace.utils.clock import utcnow
from marketplace.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def generate_order_number(now=None):
    now = now or utcnow()
    return f"ORD-{now.strftime('%Y%m%d')}-{uuid.uuid4().hex[:8].upper()}"


class OrderService:
    """Places orders together with their inventory, transaction and commission."""

    def __init__(self, store, commissions):
        self.store = store
        self.commissions = commissions

    def _priced_lines(self, vendor_id, items):
        if not items:
            raise InvalidInput('Order must contain at least one item')

        lines = []
        for item in items:
            product_id = item.get('product_id')
            quantity = item.get('quantity')
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
                raise InvalidInput('Item quantity must be a positive integer',
                                   details={'product_id': product_id})

            product = self.store.get_or_fail(Product, product_id, 'Product')
            if product.vendor_id != vendor_id:
                raise InvalidInput('Product does not belong to this vendor',
                                   details={'product_id': product_id})
            if product.inventory < quantity:
                raise InvalidInput(
                    f'Insufficient inventory for {product.name}',
                    details={'product_id': product_id, 'available': product.inventory}
                )
            lines.append((product, quantity, to_money(product.price)))
        return lines

    def create_order(self, customer_id, vendor_id, items, notes=None, actor_id=None):
        """Create an order; every write succeeds together or none does."""
        self.store.get_vendor(vendor_id)
        self.store.get_or_fail(User, customer_id, 'Customer')
        lines = self._priced_lines(vendor_id, items)
        total = sum((price * quantity for _, quantity, price in lines), ZERO)

        with self.store.atomic():
            order = self.store.add(Order(
                order_number=generate_order_number(),
                vendor_id=vendor_id,
                customer_id=customer_id,
                status=OrderStatus.PENDING,
                total_price=total,
                notes=notes,
            ))
            for product, quantity, price in lines:
                order.items.append(OrderItem(product_id=product.id, quantity=quantity, price=price))
                product.inventory -= quantity
            self.store.flush()

            commission = self.commissions.record_commission(
                order, status=CommissionStatus.CALCULATED, actor_id=actor_id or customer_id
            )
            net_payout = total - commission.amount
            self.store.add(Transaction(
                order_id=order.id,
                vendor_id=vendor_id,
                customer_id=customer_id,
                amount=total,
                commission=commission.amount,
                net_payout=net_payout,
            ))
            self.store.audit(actor_id or customer_id, 'CREATE_ORDER', 'ORDER', order.id, {
                'order_number': order.order_number,
                'vendor_id': vendor_id,
                'total': str(total),
                'item_count': len(lines),
            })

        logger.info('Order %s placed for vendor %s: total %s, commission %s',
                    order.order_number, vendor_id, total, commission.amount)
        return order

    def update_order_status(self, order_id, status, actor_id=None):
        order = self.store.get_order(order_id)
        if status not in OrderStatus.TRANSITIONS:
            raise InvalidInput(f'Unknown order status: {status}')
        if order.status == status:
            return order
        if status not in OrderStatus.TRANSITIONS[order.status]:
            raise InvalidState(f'Order cannot move from {order.status} to {status}',
                               details={'order_id': order.id})

        previous = order.status
        with self.store.atomic():
            order.status = status
            if status == OrderStatus.CANCELLED:
                for item in order.items:
                    item.product.inventory += item.quantity
                commission = self.store.commission_for_order(order.id)
                if commission is not None:
                    self.commissions.transition_commission(
                        commission.id, CommissionStatus.CANCELLED, actor_id=actor_id
                    )
            self.store.audit(actor_id, 'UPDATE_ORDER_STATUS', 'ORDER', order.id, {
                'from': previous,
                'to': status,
            })
        return order

import logging
from typing import Dict, List

from checkout.domain.models import ItemRequest, OrderItem, Product
from checkout.domain.exceptions import InsufficientStockError, NotFoundError

logger = logging.getLogger(__name__)


class StockLedger:
    """Учет остатков: резерв при заказе, возврат при отмене.

    Работает только внутри транзакции вызывающего (uow), сам не коммитит.
    """

    async def check_and_lock(self, uow, items: List[ItemRequest]) -> Dict[str, Product]:
        """Блокирует строки товаров и проверяет остатки по всем позициям"""
        product_ids = sorted({item.product_id for item in items})
        products = {product.id: product for product in await uow.products.lock_many(product_ids)}

        for item in items:
            product = products.get(item.product_id)
            if not product:
                raise NotFoundError(f"Товар {item.product_id} не найден")
            if item.quantity > product.stock_quantity:
                raise InsufficientStockError(item.product_id, item.quantity, product.stock_quantity)
        return products

    async def decrement(self, uow, items: List[OrderItem]) -> None:
        for item in items:
            decremented = await uow.products.decrement_stock(item.product_id, item.quantity)
            if not decremented:
                # остаток изменился между чтением и записью
                product = await uow.products.get_by_id(item.product_id)
                available = product.stock_quantity if product else 0
                raise InsufficientStockError(item.product_id, item.quantity, available)
            logger.info(f"Списано {item.quantity} шт. товара {item.product_id}")

    async def restore(self, uow, items: List[OrderItem]) -> None:
        for item in items:
            await uow.products.increment_stock(item.product_id, item.quantity)
            logger.info(f"Возвращено {item.quantity} шт. товара {item.product_id}")

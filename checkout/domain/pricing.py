from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from checkout.domain.models import OrderItem, OrderTotals

CENT = Decimal("0.01")


def round_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Сумма в копейках/пайсах, округление half-up"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PricingPolicy:
    """Налог, доставка и итог заказа по настройкам магазина"""

    def __init__(self, tax_rate: Decimal, shipping_fee: Decimal, free_shipping_threshold: Decimal):
        self._tax_rate = Decimal(tax_rate)
        self._shipping_fee = Decimal(shipping_fee)
        self._free_shipping_threshold = Decimal(free_shipping_threshold)

    def subtotal(self, items: Iterable[OrderItem]) -> Decimal:
        return round_money(sum((item.total_price for item in items), Decimal("0")))

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self._free_shipping_threshold:
            return round_money(0)
        return round_money(self._shipping_fee)

    def totals(self, items: Iterable[OrderItem], discount: Decimal = Decimal("0")) -> OrderTotals:
        subtotal = self.subtotal(items)
        tax_amount = round_money(subtotal * self._tax_rate)
        shipping_amount = self.shipping_for(subtotal)
        # скидка не может сделать заказ дешевле нуля по товарам
        discount_amount = round_money(min(max(Decimal(discount), Decimal("0")), subtotal))
        total_amount = round_money(subtotal + tax_amount + shipping_amount - discount_amount)
        return OrderTotals(
            subtotal=subtotal,
            tax_amount=tax_amount,
            shipping_amount=shipping_amount,
            discount_amount=discount_amount,
            total_amount=total_amount,
        )


def cod_surcharge(subtotal: Decimal, percent: Decimal, minimum: Decimal, maximum: Decimal) -> Decimal:
    charge = Decimal(subtotal) * Decimal(percent) / 100
    charge = max(charge, Decimal(minimum))
    charge = min(charge, Decimal(maximum))
    return round_money(charge)

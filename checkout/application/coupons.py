from decimal import Decimal
from typing import Optional, Dict

from checkout.application.interfaces import CouponService


class NoCouponService(CouponService):
    def discount_for(self, subtotal: Decimal, code: Optional[str]) -> Decimal:
        return Decimal("0")


class PercentCouponService(CouponService):
    """Процентные купоны из словаря {код: процент}"""

    def __init__(self, percents: Dict[str, Decimal]):
        self._percents = {code.upper(): Decimal(p) for code, p in percents.items()}

    def discount_for(self, subtotal: Decimal, code: Optional[str]) -> Decimal:
        if not code:
            return Decimal("0")
        percent = self._percents.get(code.upper())
        if percent is None:
            return Decimal("0")
        return Decimal(subtotal) * percent / 100

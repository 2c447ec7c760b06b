from decimal import Decimal

import pytest

from checkout.domain.exceptions import InvalidTransitionError
from checkout.domain.models import OrderItem, OrderStatus, PaymentStatus
from checkout.domain.pricing import PricingPolicy, cod_surcharge, round_money, to_minor_units
from checkout.domain.state_machine import (
    ORDER_TRANSITIONS, OrderStateMachine, PaymentStateMachine
)

ALLOWED_ORDER = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
    (OrderStatus.DELIVERED, OrderStatus.REFUNDED),
}


def item(price, quantity=1):
    price = Decimal(price)
    return OrderItem(
        order_id="o-1", product_id="p", quantity=quantity, unit_price=price, total_price=price * quantity
    )


class TestOrderStateMachine:
    @pytest.mark.parametrize("current", list(OrderStatus))
    @pytest.mark.parametrize("requested", list(OrderStatus))
    def test_only_listed_transitions_are_allowed(self, current, requested):
        machine = OrderStateMachine()
        assert machine.can_transition(current, requested) == ((current, requested) in ALLOWED_ORDER)

    def test_validate_raises_with_both_statuses(self):
        with pytest.raises(InvalidTransitionError) as exc:
            OrderStateMachine().validate(OrderStatus.PENDING, OrderStatus.SHIPPED)
        assert exc.value.current == OrderStatus.PENDING
        assert exc.value.requested == OrderStatus.SHIPPED
        assert "pending -> shipped" in str(exc.value)

    def test_terminal_states(self):
        machine = OrderStateMachine()
        terminal = {status for status in OrderStatus if machine.is_terminal(status)}
        assert terminal == {OrderStatus.CANCELLED, OrderStatus.REFUNDED}

    def test_accepts_plain_strings(self):
        assert OrderStateMachine().can_transition("shipped", "delivered")

    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)


class TestPaymentStateMachine:
    def test_direct_capture_from_pending(self):
        assert PaymentStateMachine().accept("pay", PaymentStatus.PENDING, PaymentStatus.COMPLETED)

    def test_refund_only_after_completion(self):
        machine = PaymentStateMachine()
        assert machine.can_transition(PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)
        assert not machine.can_transition(PaymentStatus.PENDING, PaymentStatus.REFUNDED)

    @pytest.mark.parametrize("terminal", [PaymentStatus.FAILED, PaymentStatus.REFUNDED])
    def test_terminal_statuses_reject_everything(self, terminal):
        machine = PaymentStateMachine()
        assert not any(machine.can_transition(terminal, target) for target in PaymentStatus)

    def test_rejected_transition_is_not_an_error(self):
        assert PaymentStateMachine().accept("pay", PaymentStatus.COMPLETED, PaymentStatus.COMPLETED) is False


class TestPricing:
    policy = PricingPolicy(tax_rate=Decimal("0.18"), shipping_fee=Decimal("50"),
                           free_shipping_threshold=Decimal("500"))

    def test_two_product_cart_below_free_shipping(self):
        totals = self.policy.totals([item("100", 2), item("50")])
        assert totals.subtotal == Decimal("250.00")
        assert totals.tax_amount == Decimal("45.00")
        assert totals.shipping_amount == Decimal("50.00")
        assert totals.discount_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("345.00")

    def test_free_shipping_at_threshold(self):
        totals = self.policy.totals([item("500")])
        assert totals.shipping_amount == Decimal("0.00")
        assert totals.total_amount == Decimal("590.00")

    def test_discount_is_clamped_to_subtotal(self):
        totals = self.policy.totals([item("100")], discount=Decimal("1000"))
        assert totals.discount_amount == Decimal("100.00")
        assert totals.total_amount == Decimal("68.00")

    def test_negative_discount_is_ignored(self):
        assert self.policy.totals([item("100")], discount=Decimal("-5")).discount_amount == Decimal("0.00")

    def test_tax_rounds_half_up(self):
        # 0.25 * 0.18 = 0.045
        assert self.policy.totals([item("0.25")]).tax_amount == Decimal("0.05")

    def test_money_helpers(self):
        assert round_money("2.675") == Decimal("2.68")
        assert to_minor_units(Decimal("345")) == 34500
        assert to_minor_units(Decimal("0.005")) == 1


class TestCodSurcharge:
    @pytest.mark.parametrize("subtotal, expected", [
        ("250", "20.00"),
        ("2000", "40.00"),
        ("10000", "100.00"),
    ])
    def test_percent_with_bounds(self, subtotal, expected):
        charge = cod_surcharge(Decimal(subtotal), Decimal("2"), Decimal("20"), Decimal("100"))
        assert charge == Decimal(expected)

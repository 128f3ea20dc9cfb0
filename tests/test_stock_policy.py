"""Stock quantifier tests (no database)."""

from types import SimpleNamespace

import pytest

from hubstock.core.exceptions import InconsistentStateError
from hubstock.services.stock_policy import MarketplaceStockPolicy, StockPolicy, can_supply, get_stock_policy


def unit(on_hand=0, on_demand=False, backorderable=False):
    return SimpleNamespace(id="unit", on_hand=on_hand, on_demand=on_demand, backorderable=backorderable)


@pytest.mark.parametrize("quantity", [0, 1, 5, 1000])
@pytest.mark.parametrize("on_hand", [0, 3])
def test_on_demand_always_supplies(quantity, on_hand):
    assert can_supply(unit(on_hand=on_hand, on_demand=True), quantity) is True


def test_on_hand_covers_exact_quantity_only():
    stocked = unit(on_hand=5)
    assert can_supply(stocked, 5) is True
    assert can_supply(stocked, 6) is False


def test_backorderable_supplies_shortfall():
    assert can_supply(unit(on_hand=2, backorderable=True), 10) is True


def test_out_of_stock_cannot_supply():
    assert can_supply(unit(on_hand=0)) is False


def test_quantity_defaults_to_one():
    policy = MarketplaceStockPolicy()
    assert policy.can_supply(unit(on_hand=1)) is True
    assert policy.can_supply(unit(on_hand=1), None) is True
    assert policy.can_supply(unit(on_hand=0), None) is False


def test_negative_quantity_rejected():
    with pytest.raises(ValueError):
        can_supply(unit(on_hand=5), -1)


def test_negative_on_hand_is_inconsistent():
    with pytest.raises(InconsistentStateError):
        can_supply(unit(on_hand=-1, on_demand=True))


def test_default_policy_is_marketplace_policy():
    policy = get_stock_policy()
    assert isinstance(policy, StockPolicy)
    assert isinstance(policy, MarketplaceStockPolicy)
    assert policy.in_stock(unit(on_hand=1)) is True

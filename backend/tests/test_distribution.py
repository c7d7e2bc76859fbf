"""
Dividend pool distribution across cooperative members.
"""

import pytest
from decimal import Decimal

from backend.coopfare.core.exceptions import NoEligibleMembersError
from backend.coopfare.domain.money import allocate_pro_rata
from backend.coopfare.domain.settlement.distribution import distribute_dividends
from backend.coopfare.domain.settlement.providers import EligibleMember
from backend.coopfare.domain.snapshots import HybridModel, PassengerModel, WorkerModel
from backend.coopfare.models.enums import MemberType

CUSTOMER = MemberType.CUSTOMER
DRIVER = MemberType.DRIVER


def member(member_type, member_id, weight="1"):
    return EligibleMember(member_type=member_type, member_id=member_id, weight=Decimal(weight))


def amounts(result):
    return {(share.member_type, share.member_id): share.amount for share in result.shares}


def test_hybrid_split_then_equal_customers():
    members = [member(CUSTOMER, 1), member(CUSTOMER, 2), member(CUSTOMER, 3), member(DRIVER, 10)]
    result = distribute_dividends(Decimal("500.00"), HybridModel(customer_percent=Decimal("60")), members)

    assert amounts(result) == {
        (CUSTOMER, 1): Decimal("100.00"),
        (CUSTOMER, 2): Decimal("100.00"),
        (CUSTOMER, 3): Decimal("100.00"),
        (DRIVER, 10): Decimal("200.00"),
    }
    assert result.distributed == Decimal("500.00")
    assert result.retained == Decimal("0.00")


def test_leftover_cent_goes_to_lowest_id_on_tied_weight():
    members = [member(CUSTOMER, 9), member(CUSTOMER, 4), member(CUSTOMER, 7)]
    result = distribute_dividends(Decimal("100.00"), PassengerModel(), members)

    assert amounts(result) == {
        (CUSTOMER, 4): Decimal("33.34"),
        (CUSTOMER, 7): Decimal("33.33"),
        (CUSTOMER, 9): Decimal("33.33"),
    }


def test_leftover_goes_to_heaviest_member():
    members = [member(DRIVER, 1, "1"), member(DRIVER, 2, "2")]
    result = distribute_dividends(Decimal("10.00"), WorkerModel(), members)

    assert amounts(result) == {(DRIVER, 1): Decimal("3.33"), (DRIVER, 2): Decimal("6.67")}


def test_shares_are_weighted_by_patronage():
    members = [member(CUSTOMER, 1, "3"), member(CUSTOMER, 2, "1")]
    result = distribute_dividends(Decimal("80.00"), PassengerModel(), members)

    assert amounts(result) == {(CUSTOMER, 1): Decimal("60.00"), (CUSTOMER, 2): Decimal("20.00")}


def test_model_only_pays_its_member_group():
    members = [member(CUSTOMER, 1), member(DRIVER, 2)]
    result = distribute_dividends(Decimal("50.00"), WorkerModel(), members)

    assert amounts(result) == {(DRIVER, 2): Decimal("50.00")}


def test_hybrid_group_without_members_is_retained():
    members = [member(CUSTOMER, 1)]
    result = distribute_dividends(Decimal("500.00"), HybridModel(customer_percent=Decimal("60")), members)

    assert amounts(result) == {(CUSTOMER, 1): Decimal("300.00")}
    assert result.retained == Decimal("200.00")
    assert result.distributed + result.retained == Decimal("500.00")


def test_no_eligible_members_raises():
    with pytest.raises(NoEligibleMembersError):
        distribute_dividends(Decimal("500.00"), PassengerModel(), [member(DRIVER, 1)])


def test_zero_weight_members_are_ignored():
    with pytest.raises(NoEligibleMembersError):
        distribute_dividends(Decimal("500.00"), PassengerModel(), [member(CUSTOMER, 1, "0")])


def test_empty_pool_distributes_nothing():
    result = distribute_dividends(Decimal("0.00"), PassengerModel(), [])
    assert result.shares == []
    assert result.distributed == Decimal("0.00")


def test_pro_rata_always_sums_to_total():
    shares = allocate_pro_rata(Decimal("0.05"), [("a", Decimal("1")), ("b", Decimal("1")), ("c", Decimal("1"))])
    assert shares == {"a": Decimal("0.03"), "b": Decimal("0.01"), "c": Decimal("0.01")}
    assert sum(shares.values()) == Decimal("0.05")


def test_member_below_a_cent_still_gets_a_share():
    members = [member(CUSTOMER, 4), member(CUSTOMER, 7), member(CUSTOMER, 9)]
    result = distribute_dividends(Decimal("0.01"), PassengerModel(), members)

    assert amounts(result) == {
        (CUSTOMER, 4): Decimal("0.01"),
        (CUSTOMER, 7): Decimal("0.00"),
        (CUSTOMER, 9): Decimal("0.00"),
    }
    assert result.retained == Decimal("0.00")

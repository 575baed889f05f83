from ticketbooth.ledger import (
    SoldLine, TypeSnapshot, available_for, compute_availability, sold_counts,
    would_oversell,
)

GA = TypeSnapshot(id="ga", name="General", price=5000, total=100)
VIP = TypeSnapshot(id="vip", name="VIP", price=20000, total=10)


def test_sold_counts_sums_per_type():
    lines = [SoldLine("ga", 2), SoldLine("vip", 1), SoldLine("ga", 28)]
    assert sold_counts(lines) == {"ga": 30, "vip": 1}


def test_available_is_total_minus_sold():
    (ga,) = compute_availability([GA], [SoldLine("ga", 30)])
    assert ga.sold == 30
    assert ga.available == 70
    assert not ga.sold_out


def test_holds_reduce_availability():
    ga, vip = compute_availability(
        [GA, VIP], [SoldLine("vip", 4)], held={"ga": 5, "vip": 6}
    )
    assert ga.available == 95
    assert vip.available == 0
    assert vip.sold_out


def test_available_is_clamped():
    # total shrunk below what was already sold
    assert available_for(total=10, sold=25) == 0
    assert available_for(total=10, sold=0, held=0) == 10
    assert available_for(total=10, sold=-5) == 10


def test_order_follows_input():
    out = compute_availability([VIP, GA], [])
    assert [t.id for t in out] == ["vip", "ga"]
    assert out[0].as_dict()["available"] == 10


def test_would_oversell():
    assert not would_oversell(total=100, sold=70, quantity=30)
    assert would_oversell(total=100, sold=71, quantity=30)

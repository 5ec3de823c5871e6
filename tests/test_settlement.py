from settlement import SharedCharge, Transfer, member_balances, settle


def test_two_members_single_direct_transfer():
    balances = member_balances([1, 2], [SharedCharge(40_000, 1)])

    assert [b.balance_cents for b in balances] == [20_000, -20_000]
    assert [b.fair_share_cents for b in balances] == [20_000, 20_000]
    assert settle(balances) == [Transfer(from_user_id=2, to_user_id=1, amount_cents=20_000)]


def test_charges_without_payer_are_split_evenly():
    balances = member_balances([1, 2], [SharedCharge(10_000, None), SharedCharge(3000, 2)])

    assert [b.paid_cents for b in balances] == [5000, 8000]
    assert [b.balance_cents for b in balances] == [-1500, 1500]
    assert settle(balances) == [Transfer(1, 2, 1500)]


def test_balanced_household_needs_no_transfer():
    balances = member_balances([1, 2], [SharedCharge(500, 1), SharedCharge(500, 2)])

    assert all(b.balance_cents == 0 for b in balances)
    assert settle(balances) == []


def test_three_members_greedy_netting():
    balances = member_balances(
        [1, 2, 3], [SharedCharge(60_000, 1), SharedCharge(30_000, 2)]
    )

    assert [b.balance_cents for b in balances] == [30_000, 0, -30_000]
    assert settle(balances) == [Transfer(3, 1, 30_000)]


def test_three_members_two_debtors_largest_first():
    balances = member_balances(
        [1, 2, 3], [SharedCharge(90_000, 1), SharedCharge(15_000, 3)]
    )

    # fair share 35_000 each
    assert [b.balance_cents for b in balances] == [55_000, -35_000, -20_000]
    assert settle(balances) == [Transfer(2, 1, 35_000), Transfer(3, 1, 20_000)]


def test_ties_follow_member_order():
    balances = member_balances(
        [1, 2, 3, 4], [SharedCharge(20_000, 1), SharedCharge(20_000, 2)]
    )

    transfers = settle(balances)
    assert transfers == [Transfer(3, 1, 10_000), Transfer(4, 2, 10_000)]


def test_payer_outside_household_is_ignored():
    balances = member_balances([1, 2], [SharedCharge(1000, 99)])

    assert [b.paid_cents for b in balances] == [0, 0]
    assert [b.balance_cents for b in balances] == [-500, -500]
    assert settle(balances) == []


def test_uneven_split_balances_still_net_to_zero():
    balances = member_balances([1, 2, 3], [SharedCharge(100, 1)])

    assert [b.fair_share_cents for b in balances] == [33, 33, 33]
    assert [b.balance_cents for b in balances] == [66, -33, -33]
    assert sum(b.balance_cents for b in balances) == 0
    assert settle(balances) == [Transfer(2, 1, 33), Transfer(3, 1, 33)]

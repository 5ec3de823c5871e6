from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from recurrence import round_cents


@dataclass(frozen=True)
class SharedCharge:
    amount_cents: int
    paid_by_user_id: Optional[int]


@dataclass(frozen=True)
class MemberBalance:
    user_id: int
    paid_cents: int
    fair_share_cents: int
    balance_cents: int  # > 0: is owed money, < 0: owes money


@dataclass(frozen=True)
class Transfer:
    from_user_id: int
    to_user_id: int
    amount_cents: int


def member_balances(
    member_ids: Sequence[int], charges: Iterable[SharedCharge]
) -> list[MemberBalance]:
    """Net position of every member over the period's shared charges.

    A charge without a payer counts as paid by everybody in equal parts. A
    charge fronted by one member credits that member with the full amount.
    Everybody's fair share is the same equal split of the total.
    """
    count = Decimal(len(member_ids) or 1)
    paid = {user_id: Decimal(0) for user_id in member_ids}
    fair = {user_id: Decimal(0) for user_id in member_ids}

    for charge in charges:
        amount = Decimal(charge.amount_cents)
        if charge.paid_by_user_id is not None:
            if charge.paid_by_user_id in paid:
                paid[charge.paid_by_user_id] += amount
        else:
            for user_id in member_ids:
                paid[user_id] += amount / count
        for user_id in member_ids:
            fair[user_id] += amount / count

    exact = {user_id: paid[user_id] - fair[user_id] for user_id in member_ids}
    balances = _balanced_cents(member_ids, exact)
    return [
        MemberBalance(
            user_id=user_id,
            paid_cents=round_cents(paid[user_id]),
            fair_share_cents=round_cents(fair[user_id]),
            balance_cents=balances[user_id],
        )
        for user_id in member_ids
    ]


def _balanced_cents(
    member_ids: Sequence[int], exact: dict[int, Decimal]
) -> dict[int, int]:
    """Round every balance to cents without losing or creating money.

    Rounding each member on its own can leave the household a cent or two
    off. The rounded sum is pulled back to the rounded exact sum one cent at
    a time, taken from whoever was rounded furthest in that direction.
    """
    rounded = {user_id: round_cents(exact[user_id]) for user_id in member_ids}
    target = round_cents(sum(exact.values(), Decimal(0)))
    order = {user_id: position for position, user_id in enumerate(member_ids)}

    def error(user_id: int) -> Decimal:
        return rounded[user_id] - exact[user_id]

    while sum(rounded.values()) > target:
        user_id = min(rounded, key=lambda uid: (-error(uid), order[uid]))
        rounded[user_id] -= 1
    while sum(rounded.values()) < target:
        user_id = min(rounded, key=lambda uid: (error(uid), order[uid]))
        rounded[user_id] += 1
    return rounded


def settle(balances: Sequence[MemberBalance]) -> list[Transfer]:
    """Greedy netting: the largest debtor pays the largest creditor until done.

    Ties go to the member listed first. Transfers come out largest first, so
    the first one is the headline instruction.
    """
    order = {b.user_id: position for position, b in enumerate(balances)}
    creditors = {b.user_id: b.balance_cents for b in balances if b.balance_cents > 0}
    debtors = {b.user_id: -b.balance_cents for b in balances if b.balance_cents < 0}

    transfers: list[Transfer] = []
    while creditors and debtors:
        creditor = min(creditors, key=lambda uid: (-creditors[uid], order[uid]))
        debtor = min(debtors, key=lambda uid: (-debtors[uid], order[uid]))
        amount = min(creditors[creditor], debtors[debtor])
        transfers.append(Transfer(debtor, creditor, amount))
        creditors[creditor] -= amount
        debtors[debtor] -= amount
        if creditors[creditor] == 0:
            del creditors[creditor]
        if debtors[debtor] == 0:
            del debtors[debtor]
    transfers.sort(key=lambda t: -t.amount_cents)
    return transfers

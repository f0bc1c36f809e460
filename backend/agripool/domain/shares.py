"""
Cost splitting for group bookings.

Amounts are integer minor units. Each participant owes floor(total / n); the
remainder goes to the earliest joiner so the shares always sum to the total.
"""


def split_evenly(total: int, count: int) -> list[int]:
    """
    Split `total` into `count` shares, earliest joiner first.

    >>> split_evenly(10000, 3)
    [3334, 3333, 3333]
    """
    if count <= 0:
        return []
    if total < 0:
        raise ValueError("total must be non-negative")
    base, remainder = divmod(total, count)
    return [base + remainder] + [base] * (count - 1)

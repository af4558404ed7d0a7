"""Statistics helpers for speedtest samples"""

from typing import Sequence

from .types import StatSummary


def median(sorted_vals: Sequence[float]) -> float:
    """
    Median of an already sorted, non-empty sequence.

    Args:
        sorted_vals: Values in ascending order

    Returns:
        The middle element for odd lengths, the midpoint average for even lengths
    """
    n = len(sorted_vals)
    mid = n // 2
    if n % 2 == 0:
        return (sorted_vals[mid - 1] + sorted_vals[mid]) / 2
    return sorted_vals[mid]


def calc_stats(values: Sequence[float]) -> StatSummary:
    """
    Reduce samples to min/q1/median/q3/max/avg.

    Quartiles are the medians of the lower and upper halves. Each half holds
    ceil(n / 2) values, so for odd n the median element belongs to both halves.
    Below four samples the quartiles collapse onto min and max.

    Args:
        values: Non-empty list of samples (any order)

    Returns:
        StatSummary over the samples

    Raises:
        ValueError: if values is empty
    """
    if not values:
        raise ValueError("calc_stats needs at least one sample")

    sorted_vals = sorted(values)
    n = len(sorted_vals)
    lo = sorted_vals[0]
    hi = sorted_vals[-1]
    # float summation can drift a ulp past the extremes
    avg = min(max(sum(sorted_vals) / n, lo), hi)

    if n == 1:
        return StatSummary(lo, lo, lo, lo, lo, lo)

    if n < 4:
        return StatSummary(lo, lo, median(sorted_vals), hi, hi, avg)

    half = -(-n // 2)  # ceiling division
    q1 = median(sorted_vals[:half])
    q3 = median(sorted_vals[n - half:])
    return StatSummary(lo, q1, median(sorted_vals), q3, hi, avg)

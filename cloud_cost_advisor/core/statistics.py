"""
Descriptive statistics over numeric sequences.

Every function is total: empty or degenerate input yields 0 (or an empty
list for the moving average) instead of raising.
"""

import math
from typing import List, Sequence


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean, 0 for an empty sequence."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def variance(values: Sequence[float]) -> float:
    """Population variance of the values.

    Args:
        values: Numeric samples

    Returns:
        Mean squared deviation from the mean, 0 for empty input
    """
    if not values:
        return 0.0

    avg = mean(values)
    return sum((value - avg) ** 2 for value in values) / len(values)


def stddev(values: Sequence[float]) -> float:
    """Population standard deviation."""
    return math.sqrt(variance(values))


def percentile(values: Sequence[float], p: float) -> float:
    """Compute a percentile using linear interpolation.

    Same method as numpy.percentile with the default linear interpolation.
    Percentiles outside 0-100 are clamped.

    Args:
        values: Numeric samples (any order)
        p: Percentile to compute (0-100)

    Returns:
        Interpolated percentile value, 0 for empty input
    """
    if not values:
        return 0.0

    p = min(100.0, max(0.0, p))
    sorted_values = sorted(values)
    n = len(sorted_values)

    position = (p / 100.0) * (n - 1)
    lower_index = int(position)
    upper_index = min(lower_index + 1, n - 1)
    fraction = position - lower_index

    lower_value = sorted_values[lower_index]
    upper_value = sorted_values[upper_index]

    return lower_value + fraction * (upper_value - lower_value)


def moving_average(values: Sequence[float], window: int) -> List[float]:
    """Trailing moving average with the window clipped at the start.

    The first ``window - 1`` outputs average over however many values exist
    so far, so the output has the same length as the input.

    Args:
        values: Numeric samples in order
        window: Window size

    Returns:
        List of averages, empty if values is empty or window <= 0
    """
    if not values or window <= 0:
        return []

    result = []
    for i in range(len(values)):
        start = max(0, i - window + 1)
        result.append(mean(values[start:i + 1]))
    return result


def trend(values: Sequence[float]) -> float:
    """Ordinary least squares slope of value against index.

    Returns:
        Slope per step, 0 when fewer than two values
    """
    n = len(values)
    if n < 2:
        return 0.0

    x_mean = (n - 1) / 2
    y_mean = mean(values)

    numerator = 0.0
    denominator = 0.0
    for i, value in enumerate(values):
        x_diff = i - x_mean
        numerator += x_diff * (value - y_mean)
        denominator += x_diff * x_diff

    return numerator / denominator if denominator else 0.0

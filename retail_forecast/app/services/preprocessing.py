r"""retail_forecast\app\services\preprocessing.py

Cleaning steps applied to a daily quantity series before it reaches the
ensemble: missing-day imputation and median-absolute-deviation outlier
rejection.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

# Share of the mean daily transaction count assumed to involve one product.
TRANSACTION_SHARE = 0.1


def _middle(values: Sequence[float]) -> float:
    # Upper middle element for even lengths, not the interpolated median.
    ordered = sorted(values)
    return float(ordered[len(ordered) // 2])


def _keep_mask(values: Sequence[float]) -> List[bool]:
    if len(values) < 3:
        return [True] * len(values)

    median = _middle(values)
    threshold = 2 * _middle([abs(x - median) for x in values])
    return [abs(x - median) <= threshold for x in values]


def remove_outliers(series: Sequence[float]) -> List[float]:
    """Drop points further than ``2 × MAD`` from the median.

    Series with fewer than three points are returned unchanged.  Rejected
    points are removed, not replaced, so the result may be shorter than the
    input; relative order is preserved.
    """

    values = list(series)
    return [x for x, keep in zip(values, _keep_mask(values)) if keep]


def fill_missing_values(
    series: Sequence[Optional[float]],
    stock_levels: Sequence[Optional[float]] | None = None,
    transaction_counts: Sequence[float] | None = None,
) -> List[float]:
    """Impute missing days of ``series``.

    ``stock_levels`` is aligned with ``series`` (one closing stock per day, or
    ``None``).  For a missing day ``i`` the stock depletion
    ``stock[i] - stock[i + 1]`` is used when both levels are known; otherwise
    a tenth of the mean daily transaction count; otherwise zero.  The result
    never contains negative values.
    """

    stock = list(stock_levels or [])
    fallback: float | None = None
    if transaction_counts:
        fallback = max(0.0, float(np.mean(transaction_counts)) * TRANSACTION_SHARE)

    filled: List[float] = []
    for i, value in enumerate(series):
        if value is not None and not np.isnan(value):
            filled.append(float(value))
            continue

        today = stock[i] if i < len(stock) else None
        tomorrow = stock[i + 1] if i + 1 < len(stock) else None
        if today is not None and tomorrow is not None:
            filled.append(max(0.0, float(today) - float(tomorrow)))
        elif fallback is not None:
            filled.append(fallback)
        else:
            filled.append(0.0)
    return filled


def clean_daily_series(
    series: Sequence[Optional[float]],
    stock_levels: Sequence[Optional[float]] | None = None,
    transaction_counts: Sequence[float] | None = None,
) -> List[float]:
    """Reject outlier days, then impute the missing ones.

    The MAD filter only sees observed days, so imputed values never decide
    what counts as an outlier.  Rejected days are dropped; missing days are
    always kept and filled with :func:`fill_missing_values`.
    """

    observed = [float(v) for v in series if v is not None and not np.isnan(v)]
    kept = iter(_keep_mask(observed))
    keep = [True if v is None or np.isnan(v) else next(kept) for v in series]

    filled = fill_missing_values(series, stock_levels, transaction_counts)
    return [value for value, flag in zip(filled, keep) if flag]

r"""retail_forecast\app\core\errors.py

Exception types raised by the forecasting engine and its data collaborators.

Insufficient history is deliberately *not* an error: every model degrades to
a low-confidence fallback instead of raising.
"""

from __future__ import annotations


class InvalidInputError(ValueError):
    """Input series violate the engine's preconditions.

    Raised at the assembly boundary for negative quantities or timestamps that
    are not in chronological order.
    """


class UpstreamFetchError(RuntimeError):
    """A backing table could not be read."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table


class ProductNotFoundError(LookupError):
    """The requested product id is not in the product table."""

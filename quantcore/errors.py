"""
Error taxonomy for the analytics core.

Every error carries a short machine-readable `code` so an outer layer can
map it onto a response without parsing the message.
"""

__all__ = ["QuantCoreError", "InsufficientDataError", "InvalidInputError"]


class QuantCoreError(Exception):
    """Base class for all failures raised by the analytics core."""

    code = "error"


class InsufficientDataError(QuantCoreError):
    """Raised before any computation when the candle history is too short."""

    code = "insufficient_data"

    def __init__(self, required: int, available: int, symbol: str = ""):
        self.required = required
        self.available = available
        self.symbol = symbol
        super().__init__(
            f"not enough history ({available} candles, need at least {required})"
        )


class InvalidInputError(QuantCoreError):
    """Raised for malformed candles or an unusable position set."""

    code = "invalid_input"

    def __init__(self, message: str, code: str = "invalid_input"):
        self.code = code
        super().__init__(message)

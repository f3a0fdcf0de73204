"""
Error taxonomy.

    InvalidInputError       rejected before any external call, terminal
    DataCompletenessError   no (or too few) mapped line items, terminal
    ExternalApiError        non-2xx / timeout from an external service,
                            retryable when transient
    StockConflictError      both catalogs changed since the last sync
    OrderInFlightError      cancellation while the order is still being issued,
                            retried once the document exists
"""
from __future__ import annotations


class FiscalBridgeError(Exception):
    retryable = False


class InvalidInputError(FiscalBridgeError, ValueError):
    pass


class ConfigurationError(InvalidInputError):
    pass


class DataCompletenessError(FiscalBridgeError):
    pass


class ExternalApiError(FiscalBridgeError):
    service = "external"

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if retryable is None:
            # timeouts / connection errors have no status
            retryable = status_code is None or status_code == 429 or status_code >= 500
        self.retryable = retryable

    def __str__(self) -> str:
        if self.status_code is None:
            return f"{self.service} API error: {self.message}"
        return f"{self.service} API error ({self.status_code}): {self.message}"


class FiscalApiError(ExternalApiError):
    service = "fiscal"


class CommerceApiError(ExternalApiError):
    service = "commerce"


class StockConflictError(FiscalBridgeError):
    pass


class OrderInFlightError(FiscalBridgeError):
    retryable = True

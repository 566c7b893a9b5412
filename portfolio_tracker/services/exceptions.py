# portfolio_tracker/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO HTTP knowledge.
Each class carries a machine-readable `code`; main.py maps the exception
families to status codes and renders {"error": ..., "code": ...}.

Exception Hierarchy:
    ServiceError (base, INTERNAL_ERROR)
    ├── ValidationError (VALIDATION_ERROR)
    │   ├── InvalidDateRangeError
    │   ├── InvalidCostBasisMethodError
    │   ├── InvalidThresholdError
    │   ├── InvalidLotSelectionError
    │   └── CostBasisMethodLockedError
    ├── NotFoundError
    │   ├── PortfolioNotFoundError
    │   ├── TransactionNotFoundError
    │   ├── HoldingNotFoundError
    │   ├── TaxLotNotFoundError
    │   ├── ActionNotFoundError
    │   ├── CorporateActionNotFoundError
    │   ├── SnapshotNotFoundError
    │   └── ImportBatchNotFoundError
    ├── AuthenticationError
    │   ├── InvalidCredentialsError
    │   └── TokenExpiredError
    ├── AuthorizationError
    ├── ConflictError
    │   ├── ActionNotApprovedError
    │   ├── CorporateActionExistsError
    │   └── PortfolioNotEmptyError
    ├── BusinessRuleError
    │   ├── InsufficientSharesError
    │   ├── ActionNotPendingError
    │   └── IrrNonConvergentError
    ├── DeadlineExceededError
    └── MarketDataError
        ├── PriceUnavailableError
        ├── ProviderUnavailableError
        └── ProviderRateLimitError
"""

from datetime import date
from decimal import Decimal


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code
    """

    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails inside a service.

    Pydantic handles shape validation at the router; this covers rules that
    need domain context (date ranges, lot selections, method changes).

    Attributes:
        field: The field that failed validation (optional)
    """

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidDateRangeError(ValidationError):
    code = "INVALID_DATE_RANGE"

    def __init__(self, start_date: date, end_date: date, reason: str | None = None) -> None:
        self.start_date = start_date
        self.end_date = end_date
        message = reason or f"start_date {start_date} must be on or before end_date {end_date}"
        super().__init__(message, field="start_date")


class InvalidCostBasisMethodError(ValidationError):
    """Raised for an unknown cost-basis method or a method/input mismatch."""

    code = "INVALID_METHOD"

    def __init__(self, method: str, reason: str | None = None) -> None:
        self.method = method
        message = reason or f"Invalid cost basis method: '{method}'. Valid options: FIFO, LIFO, SPECIFIC_LOT"
        super().__init__(message, field="method")


class InvalidThresholdError(ValidationError):
    code = "INVALID_THRESHOLD"

    def __init__(self, threshold: Decimal) -> None:
        self.threshold = threshold
        super().__init__(
            f"Invalid harvest threshold {threshold}: expected a signed percent between -100 and 0",
            field="threshold",
        )


class InvalidLotSelectionError(ValidationError):
    code = "INVALID_LOT_SELECTION"


class CostBasisMethodLockedError(ValidationError):
    """Raised when changing the cost-basis method of a portfolio that already sold."""

    code = "COST_BASIS_METHOD_LOCKED"

    def __init__(self, portfolio_id: int) -> None:
        self.portfolio_id = portfolio_id
        super().__init__(
            f"Cost basis method of portfolio {portfolio_id} cannot change after the first sell",
            field="cost_basis_method",
        )


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Portfolio", "TaxLot")
        resource_id: Identifier of the resource
    """

    code = "NOT_FOUND"

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class PortfolioNotFoundError(NotFoundError):
    code = "PORTFOLIO_NOT_FOUND"

    def __init__(self, portfolio_id: int) -> None:
        self.portfolio_id = portfolio_id
        super().__init__(
            f"Portfolio {portfolio_id} not found",
            resource_type="Portfolio",
            resource_id=portfolio_id,
        )


class TransactionNotFoundError(NotFoundError):
    code = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: int) -> None:
        super().__init__(
            f"Transaction {transaction_id} not found",
            resource_type="Transaction",
            resource_id=transaction_id,
        )


class HoldingNotFoundError(NotFoundError):
    code = "HOLDING_NOT_FOUND"

    def __init__(self, portfolio_id: int, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(
            f"No holding of {symbol} in portfolio {portfolio_id}",
            resource_type="Holding",
            resource_id=symbol,
        )


class TaxLotNotFoundError(NotFoundError):
    code = "TAX_LOT_NOT_FOUND"

    def __init__(self, lot_id: int) -> None:
        super().__init__(
            f"Tax lot {lot_id} not found",
            resource_type="TaxLot",
            resource_id=lot_id,
        )


class ActionNotFoundError(NotFoundError):
    code = "ACTION_NOT_FOUND"

    def __init__(self, action_id: int) -> None:
        super().__init__(
            f"Portfolio action {action_id} not found",
            resource_type="PortfolioAction",
            resource_id=action_id,
        )


class CorporateActionNotFoundError(NotFoundError):
    code = "CORPORATE_ACTION_NOT_FOUND"

    def __init__(self, corporate_action_id: int) -> None:
        super().__init__(
            f"Corporate action {corporate_action_id} not found",
            resource_type="CorporateAction",
            resource_id=corporate_action_id,
        )


class SnapshotNotFoundError(NotFoundError):
    code = "SNAPSHOT_NOT_FOUND"

    def __init__(self, portfolio_id: int) -> None:
        super().__init__(
            f"No performance snapshot found for portfolio {portfolio_id}",
            resource_type="PerformanceSnapshot",
            resource_id=portfolio_id,
        )


class ImportBatchNotFoundError(NotFoundError):
    code = "IMPORT_BATCH_NOT_FOUND"

    def __init__(self, batch_id: int) -> None:
        super().__init__(
            f"Import batch {batch_id} not found",
            resource_type="ImportBatch",
            resource_id=batch_id,
        )


# =============================================================================
# AUTHENTICATION / AUTHORIZATION ERRORS
# =============================================================================


class AuthenticationError(ServiceError):
    """Base exception for bearer-token failures."""

    code = "UNAUTHORIZED"


class InvalidCredentialsError(AuthenticationError):
    def __init__(self, message: str = "Invalid authentication credentials") -> None:
        super().__init__(message)


class TokenExpiredError(AuthenticationError):
    def __init__(self, message: str = "Access token has expired") -> None:
        super().__init__(message)


class AuthorizationError(ServiceError):
    """
    Raised when the principal does not own the resource.

    Attributes:
        resource_type: Type of resource access was denied to
        resource_id: Identifier of that resource
    """

    code = "FORBIDDEN"

    def __init__(
            self,
            resource_type: str,
            resource_id: int | str,
            message: str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message or f"You don't have permission to access this {resource_type.lower()}")


# =============================================================================
# CONFLICT ERRORS
# =============================================================================


class ConflictError(ServiceError):
    code = "CONFLICT"


class ActionNotApprovedError(ConflictError):
    """Raised when applying an action that was never approved."""

    code = "ACTION_NOT_APPROVED"

    def __init__(self, action_id: int, status: str) -> None:
        self.action_id = action_id
        self.status = status
        super().__init__(f"Action {action_id} is {status}; only APPROVED actions can be applied")


class CorporateActionExistsError(ConflictError):
    code = "CORPORATE_ACTION_EXISTS"

    def __init__(self, symbol: str, action_type: str, action_date: date) -> None:
        super().__init__(f"{action_type} for {symbol} on {action_date} is already registered")


class PortfolioNotEmptyError(ConflictError):
    code = "PORTFOLIO_NOT_EMPTY"

    def __init__(self, portfolio_id: int) -> None:
        self.portfolio_id = portfolio_id
        super().__init__(
            f"Portfolio {portfolio_id} has recorded events; pass force=true to delete it with its history"
        )


# =============================================================================
# BUSINESS RULE ERRORS
# =============================================================================


class BusinessRuleError(ServiceError):
    code = "BUSINESS_RULE_VIOLATION"


class InsufficientSharesError(BusinessRuleError):
    """
    Raised when a sale exceeds the open quantity of a symbol.

    Attributes:
        symbol: Symbol being sold
        requested: Quantity the sale asked for
        available: Open quantity at the sale date
    """

    code = "INSUFFICIENT_SHARES"

    def __init__(
            self,
            symbol: str,
            requested: Decimal,
            available: Decimal,
            sale_date: date | None = None,
    ) -> None:
        self.symbol = symbol
        self.requested = requested
        self.available = available
        self.sale_date = sale_date
        when = f" on {sale_date}" if sale_date else ""
        super().__init__(
            f"Insufficient shares of {symbol}{when}: requested {requested}, available {available}"
        )


class ActionNotPendingError(BusinessRuleError):
    code = "ACTION_NOT_PENDING"

    def __init__(self, action_id: int, status: str) -> None:
        self.action_id = action_id
        self.status = status
        super().__init__(f"Action {action_id} is {status}, not PENDING")


class IrrNonConvergentError(BusinessRuleError):
    """
    Raised by strict callers when the IRR solver does not converge.

    Attributes:
        best_estimate: Rate with the smallest residual seen by the solver
    """

    code = "IRR_NONCONVERGENT"

    def __init__(self, best_estimate: Decimal | None, iterations: int) -> None:
        self.best_estimate = best_estimate
        self.iterations = iterations
        super().__init__(f"IRR did not converge after {iterations} iterations")


# =============================================================================
# DEADLINE
# =============================================================================


class DeadlineExceededError(ServiceError):
    code = "DEADLINE_EXCEEDED"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Deadline exceeded during {operation}")


# =============================================================================
# MARKET DATA ERRORS
# =============================================================================


class MarketDataError(ServiceError):
    """Base exception for price oracle failures."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class PriceUnavailableError(MarketDataError):
    """Raised when the provider has no price for a symbol."""

    def __init__(self, symbol: str, provider: str | None = None, on: date | None = None) -> None:
        self.symbol = symbol
        self.on = on
        when = f" on {on}" if on else ""
        super().__init__(f"No price available for {symbol}{when}", provider=provider)


class ProviderUnavailableError(MarketDataError):
    """Raised when the provider cannot be reached. Retried by the oracle."""

    def __init__(self, provider: str, reason: str | None = None) -> None:
        self.reason = reason
        message = f"Market data provider '{provider}' is unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message, provider=provider)


class ProviderRateLimitError(MarketDataError):
    """Raised when the provider throttles us. Retried by the oracle."""

    def __init__(self, provider: str, retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for provider '{provider}'", provider=provider)


__all__ = [
    "ServiceError",
    "ValidationError",
    "InvalidDateRangeError",
    "InvalidCostBasisMethodError",
    "InvalidThresholdError",
    "InvalidLotSelectionError",
    "CostBasisMethodLockedError",
    "NotFoundError",
    "PortfolioNotFoundError",
    "TransactionNotFoundError",
    "HoldingNotFoundError",
    "TaxLotNotFoundError",
    "ActionNotFoundError",
    "CorporateActionNotFoundError",
    "SnapshotNotFoundError",
    "ImportBatchNotFoundError",
    "AuthenticationError",
    "InvalidCredentialsError",
    "TokenExpiredError",
    "AuthorizationError",
    "ConflictError",
    "ActionNotApprovedError",
    "CorporateActionExistsError",
    "PortfolioNotEmptyError",
    "BusinessRuleError",
    "InsufficientSharesError",
    "ActionNotPendingError",
    "IrrNonConvergentError",
    "DeadlineExceededError",
    "MarketDataError",
    "PriceUnavailableError",
    "ProviderUnavailableError",
    "ProviderRateLimitError",
]

# portfolio_tracker/schemas/__init__.py
"""
Pydantic schemas for API request/response validation.

Organized by domain:
- actions: corporate actions and the review workflow
- errors: error response format
- holdings: holdings, tax lots, realized gains
- imports: bulk and CSV import
- pagination: list metadata
- performance: returns, metrics, snapshots
- portfolios: portfolio CRUD
- tax: allocation preview, harvest, tax report
- transactions: transaction CRUD
- validators: reusable field validators (symbol, currency)

Decimals serialize as JSON strings and dates as YYYY-MM-DD.
"""

from portfolio_tracker.schemas.actions import (
    ApproveRequest,
    CorporateActionCreate,
    CorporateActionResponse,
    PortfolioActionResponse,
    RejectRequest,
)
from portfolio_tracker.schemas.errors import ErrorResponse
from portfolio_tracker.schemas.holdings import HoldingResponse, RealizedGainResponse, TaxLotResponse
from portfolio_tracker.schemas.imports import (
    BulkImportRequest,
    BulkImportRow,
    ImportBatchDeleteResponse,
    ImportBatchResponse,
    ImportResultResponse,
    ImportRowErrorResponse,
)
from portfolio_tracker.schemas.pagination import PaginationMeta
from portfolio_tracker.schemas.performance import (
    AnnualizedReturnResponse,
    BenchmarkComparisonResponse,
    MWRResponse,
    PerformanceMetricsResponse,
    SnapshotCreate,
    SnapshotListResponse,
    SnapshotResponse,
    SubPeriodResponse,
    TWRResponse,
)
from portfolio_tracker.schemas.portfolios import (
    PortfolioCreate,
    PortfolioListResponse,
    PortfolioResponse,
    PortfolioUpdate,
)
from portfolio_tracker.schemas.tax import (
    AllocationPreviewResponse,
    AllocationRequest,
    AllocationResponse,
    HarvestOpportunityResponse,
    HarvestResponse,
    TaxReportRequest,
    TaxReportResponse,
)
from portfolio_tracker.schemas.transactions import (
    LotSelectionItem,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionUpdate,
)

__all__ = [
    # Corporate actions
    "ApproveRequest",
    "CorporateActionCreate",
    "CorporateActionResponse",
    "PortfolioActionResponse",
    "RejectRequest",
    # Errors
    "ErrorResponse",
    # Holdings
    "HoldingResponse",
    "RealizedGainResponse",
    "TaxLotResponse",
    # Imports
    "BulkImportRequest",
    "BulkImportRow",
    "ImportBatchDeleteResponse",
    "ImportBatchResponse",
    "ImportResultResponse",
    "ImportRowErrorResponse",
    # Pagination
    "PaginationMeta",
    # Performance
    "AnnualizedReturnResponse",
    "BenchmarkComparisonResponse",
    "MWRResponse",
    "PerformanceMetricsResponse",
    "SnapshotCreate",
    "SnapshotListResponse",
    "SnapshotResponse",
    "SubPeriodResponse",
    "TWRResponse",
    # Portfolios
    "PortfolioCreate",
    "PortfolioListResponse",
    "PortfolioResponse",
    "PortfolioUpdate",
    # Tax
    "AllocationPreviewResponse",
    "AllocationRequest",
    "AllocationResponse",
    "HarvestOpportunityResponse",
    "HarvestResponse",
    "TaxReportRequest",
    "TaxReportResponse",
    # Transactions
    "LotSelectionItem",
    "TransactionCreate",
    "TransactionListResponse",
    "TransactionResponse",
    "TransactionUpdate",
]

# portfolio_tracker/routers/imports.py
"""
Import endpoints.

- POST   /portfolios/{portfolio_id}/transactions/import/bulk   JSON list of rows
- POST   /portfolios/{portfolio_id}/transactions/import/csv    CSV file upload
- GET    /portfolios/{portfolio_id}/imports                    import batches, newest first
- DELETE /portfolios/{portfolio_id}/imports/{batch_id}         remove a batch's transactions

An import is one unit of work: rows are validated, simulated against the
existing history, then committed together under a single ImportBatch.
Row-level problems come back in the result body with their line number.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from portfolio_tracker.database import get_db
from portfolio_tracker.dependencies import get_import_service, get_portfolio_with_owner_check
from portfolio_tracker.middleware.rate_limit import (
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_IMPORT,
    RATE_LIMIT_WRITE,
    limiter,
)
from portfolio_tracker.models import Portfolio
from portfolio_tracker.schemas.imports import (
    BulkImportRequest,
    ImportBatchDeleteResponse,
    ImportBatchResponse,
    ImportResultResponse,
)
from portfolio_tracker.services.constants import MAX_IMPORT_FILE_SIZE
from portfolio_tracker.services.imports import (
    DateFormat,
    ImportBatchSummary,
    ImportRecord,
    ImportResult,
    ImportService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolios", tags=["Imports"])


@router.post(
    "/{portfolio_id}/transactions/import/bulk",
    response_model=ImportResultResponse,
    summary="Import a list of transactions",
)
@limiter.limit(RATE_LIMIT_IMPORT)
def import_bulk(
    request: Request,
    body: BulkImportRequest,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[ImportService, Depends(get_import_service)],
) -> ImportResult:
    """
    Import rows given in the request body.

    Without skip_invalid the first rejected row aborts the whole import
    and nothing is written. dry_run validates and simulates only.
    """
    records = [
        ImportRecord(
            line=index,
            transaction_type=row.transaction_type,
            date=row.date,
            quantity=row.quantity,
            symbol=row.symbol,
            price=row.price,
            commission=row.commission,
            currency=row.currency,
            notes=row.notes,
            raw_data=row.model_dump_json(),
        )
        for index, row in enumerate(body.transactions, start=1)
    ]
    return service.import_records(
        db,
        portfolio,
        records,
        source="bulk",
        dry_run=body.dry_run,
        skip_invalid=body.skip_invalid,
        notes=body.notes,
    )


@router.post(
    "/{portfolio_id}/transactions/import/csv",
    response_model=ImportResultResponse,
    summary="Import transactions from a CSV file",
)
@limiter.limit(RATE_LIMIT_IMPORT)
def import_csv(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[ImportService, Depends(get_import_service)],
    file: UploadFile = File(..., description="CSV file with a header row"),
    date_format: DateFormat = Query(
        default=DateFormat.ISO,
        description="ISO: YYYY-MM-DD, US: M/D/YYYY, EU: D/M/YYYY",
    ),
    dry_run: bool = Query(default=False),
    skip_invalid: bool = Query(default=False),
    notes: str | None = Form(default=None, max_length=500),
) -> ImportResult:
    """
    Import a CSV file.

    **Required columns:** date, type, quantity. BUY, SELL and DIVIDEND rows
    also need symbol; BUY and SELL need price.

    **Optional columns:** commission, currency, notes.

    ```
    date,type,symbol,quantity,price,commission,currency
    2024-01-02,BUY,AAPL,10,185.64,1.00,USD
    ```

    Raises **413** when the file is larger than the upload limit.
    """
    content = file.file.read()
    file_size = len(content)
    file.file.seek(0)

    if file_size > MAX_IMPORT_FILE_SIZE:
        max_mb = MAX_IMPORT_FILE_SIZE / (1024 * 1024)
        actual_mb = file_size / (1024 * 1024)
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large: {actual_mb:.1f}MB exceeds maximum of {max_mb:.0f}MB",
        )

    filename = file.filename or "upload.csv"
    logger.info(f"CSV import {filename} ({file_size} bytes) -> portfolio {portfolio.id}, date_format={date_format.value}")

    return service.import_csv(
        db,
        portfolio,
        file.file,
        filename,
        date_format=date_format,
        dry_run=dry_run,
        skip_invalid=skip_invalid,
        notes=notes,
    )


@router.get(
    "/{portfolio_id}/imports",
    response_model=list[ImportBatchResponse],
    summary="List import batches",
)
@limiter.limit(RATE_LIMIT_DEFAULT)
def list_import_batches(
    request: Request,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[ImportService, Depends(get_import_service)],
) -> list[ImportBatchSummary]:
    return service.list_batches(db, portfolio.id)


@router.delete(
    "/{portfolio_id}/imports/{batch_id}",
    response_model=ImportBatchDeleteResponse,
    summary="Delete an import batch",
)
@limiter.limit(RATE_LIMIT_WRITE)
def delete_import_batch(
    request: Request,
    batch_id: int,
    portfolio: Annotated[Portfolio, Depends(get_portfolio_with_owner_check)],
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[ImportService, Depends(get_import_service)],
) -> dict:
    """Remove every transaction the batch created and re-derive the portfolio."""
    deleted = service.delete_batch(db, portfolio, batch_id)
    return {"batch_id": batch_id, "deleted_transactions": deleted}

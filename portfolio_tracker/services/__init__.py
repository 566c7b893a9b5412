# portfolio_tracker/services/__init__.py
"""
Service layer for the portfolio state engine.

Services:
- Have NO knowledge of HTTP (no HTTPException, no status codes)
- Raise domain-specific exceptions (see exceptions.py)
- Receive database sessions as parameters (not via Depends)
- Are easily testable via dependency injection

Architecture:
    services/
    ├── exceptions.py          # Domain exceptions with machine codes
    ├── constants.py           # Business constants and limits
    ├── protocols.py           # Price oracle interface
    ├── locks.py               # Per-portfolio read/write locks
    ├── events.py              # Event store (transactions)
    ├── portfolios.py          # Portfolio lifecycle
    ├── ledger/                # Lot book, allocator, ledger, holdings
    ├── corporate_actions/     # Review workflow and detector
    ├── performance/           # Returns, performance service, snapshots
    ├── imports/               # Bulk and CSV import orchestration
    ├── market_data/           # Price oracle implementations and cache
    ├── tax.py                 # Tax lots, harvest, tax report
    ├── query.py               # Read-only projections
    ├── scheduler.py           # Background jobs
    └── auth/                  # Bearer token validation
"""

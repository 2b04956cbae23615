"""
Stock Kernel - franchise stock transfer core

A ledger-backed, two-tier inventory core with:
- A transfer state machine with admin approval
- A single stock-mutation path (StockCoordinator)
- An append-only stock ledger with compare-and-set writes
- Read-side projections for transfers and ledger history
"""

__version__ = "0.1.0"

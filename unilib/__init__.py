"""University Library Circulation - Core Package

This package contains the borrowing lifecycle and inventory modules:
- Borrowing records and returns (borrowing.py)
- Copy-count ledger (inventory.py)
- Fine calculation (fines.py)
- Delete guard for referenced rows (guard.py)
- Books, members and staff records (catalog.py)
- Member/book summary and CSV export (reports.py)
- Database layer (database.py)
- API endpoints (api.py) and CLI interface (main.py)
"""

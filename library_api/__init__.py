"""Library Loans API - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- Book catalog and loan lifecycle logic (library.py)
- User accounts and bearer tokens (accounts.py, auth.py)
- Overdue loan sweeper (sweeper.py)
- CLI interface (main.py)
- Data records (book.py, user.py, loan.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"

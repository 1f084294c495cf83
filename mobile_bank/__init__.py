"""
Mobile Bank Backend

Transfer core for a mobile banking app: an account ledger with row-level
locking, an atomic funds-transfer engine, a paginated transaction history
and stateless access/refresh credentials. All money uses Decimal.
"""

__version__ = "1.0.0"

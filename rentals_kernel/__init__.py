"""
Rentals Kernel

Payment lifecycle core for the rental back office:
- Payment status derived from calendar arithmetic
- Version-checked (optimistic) payment writes
- Append-only payment history, reminder and audit records
"""

__version__ = "0.1.0"

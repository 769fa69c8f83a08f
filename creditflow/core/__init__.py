"""
CreditFlow Core Package

Reliable delivery (outbox + dedup), the broker boundary, the credit
domain and shared infrastructure.
"""

from . import database
from . import events

__all__ = ["database", "events"]

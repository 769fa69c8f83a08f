"""
CreditFlow

Event-driven credit application pipeline with transactional outbox
publishing and idempotent stage consumers.
"""

__version__ = "1.0.0"

"""HTTP surface of the credit pipeline."""

from .main import create_app

__all__ = ["create_app"]

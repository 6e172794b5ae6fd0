"""ppage-sync: replica reconciliation for folder/page document stores."""

__version__ = "2.0.0"

"""gitpulse — repository activity sync and delivery metrics."""

__version__ = "0.1.0"

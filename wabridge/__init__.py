"""Bridge between a WhatsApp session and local consumers."""

__version__ = "1.0.0"

"""wabridge - WhatsApp gateway relay for multi-tenant stores."""

__version__ = "0.3.0"

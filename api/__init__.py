"""HTTP API for the lead pipeline CRM."""

__version__ = "1.0.0"

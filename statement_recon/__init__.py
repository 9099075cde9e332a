"""Statement import & reconciliation engine for SACCO back offices."""

__version__ = "0.1.0"

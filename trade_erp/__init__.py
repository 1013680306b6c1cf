"""Invoice lifecycle, tax engine and stock-movement ledger for a trading-company ERP."""

__version__ = "1.0.0"

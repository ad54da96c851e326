"""Order-to-cash and manufacturing ledger for a packaged-goods distributor."""

__version__ = "1.0.0"

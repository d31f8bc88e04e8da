"""Leave balance allocation and consumption ledger."""

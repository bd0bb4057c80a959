"""Red-flag detection for contracts: run several analyzers, merge their findings, query them."""

__version__ = "0.1.0"

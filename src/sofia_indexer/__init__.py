"""Sofia indexer: watches the Intuition multivault for provenance-signed records."""

__version__ = "0.1.0"

"""ledgerpipe - bank statement imports with an asynchronous enrichment pipeline."""

__version__ = "0.1.0"

"""Local-first encrypted data layer for the StockLens receipt tracker."""

__version__ = "0.1.0"

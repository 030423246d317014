"""
Core bookkeeping modules.

This package contains:
- config: Application configuration and settings
- currency: Exchange rate resolution and conversion
- db: SQLite storage layer
- exceptions: Custom exception classes
- exporters: Excel export of transactions
- journal: Double-entry classification
- logger: Logging configuration
- matching: Fuzzy search helpers
- schema: Pydantic models for requests and records
"""

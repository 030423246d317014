"""
Service layer for business logic.

Each service scopes its reads and writes to the caller's business and
raises ``BookkeepingError`` subclasses for the API layer to report.
"""

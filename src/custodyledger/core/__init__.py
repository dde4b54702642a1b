"""Core types, errors, configuration and logging for CustodyLedger."""

"""Unit tests for the voting portal.

These run without PostgreSQL: the store is replaced by an in-memory
implementation that honours the same atomic check-and-insert contract.
"""

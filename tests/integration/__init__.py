"""Integration tests for the voting portal.

These tests run the vote store and engine against a real PostgreSQL server:

- End-to-end vote flow
- Concurrent duplicate submissions stopped by the unique constraint

Tests are skipped when PostgreSQL is not reachable.
"""

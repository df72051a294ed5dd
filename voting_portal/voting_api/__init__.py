"""Voting API service: sessions, the voting engine and the HTTP surface."""

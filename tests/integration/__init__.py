"""
Integration tests for the commitment guard.

These tests wire the real engine, guard, validator and resolver together over
the FakeLedger market. PostgreSQL-backed tests need INTEGRATION_DATABASE_URL.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""

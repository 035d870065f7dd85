"""
Tests Module: Unit and Integration Tests

Test Coverage:
    - Core types and error normalization
    - Retry policy (classification, backoff bounds, budgets)
    - Lifecycle state machine
    - Registration saga (compensation paths)
    - Session manager (login, register, restore, profile, logout)
    - Session monitor (expiry, proactive refresh, task lifecycle)
    - PostgreSQL profile store (error mapping, queries)
    - Configuration and structured logging
"""

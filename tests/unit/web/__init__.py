"""Unit tests for ledgerpipe web route modules.

Structure:
    tests/unit/web/
    ├── test_routes_imports.py       # Import session routes
    ├── test_routes_reprocess.py     # Reprocess routes
    └── test_app.py                  # Error mapping, health

Testing pattern:
    - Use FastAPI's TestClient for route testing
    - Replace the pipeline context with mocks via dependency_overrides
    - Test request/response validation and error mapping
"""

"""
Tests Package - Unit Tests

Test structure:
- tests/unit/ - Fast, isolated unit tests (HTTP via httpx.MockTransport, SQLite on tmp_path)
- tests/fakes.py - Scripted App Store and sleep recorder
- tests/conftest.py - Shared pytest fixtures
"""

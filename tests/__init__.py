# MFAGuard Test Suite
"""
Test suite including:
- Unit tests per component
- Integration tests of the full login flow
- Security tests (replay, races, enumeration, invalid input)

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""

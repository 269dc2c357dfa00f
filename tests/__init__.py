"""
Test suite for the Callable Primitive System.

Test structure:
- unit/ - Unit tests (fast, isolated)
- integration/ - Integration tests (slower, real sockets)

Run tests:
    pytest                    # All tests
    pytest tests/unit         # Unit tests only
    pytest tests/integration  # Integration tests only
    pytest -k "serialization" # Tests matching name

Philosophy:
    The source text is the truth. Every test that rebuilds a callable
    checks it behaves exactly like the one it came from.
"""

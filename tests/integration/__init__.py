"""
Integration Tests Package

End-to-end dispatch through real collaborators (in-memory and SQLite
repositories, mocked HTTP transports).

TEST AXIOMS:
=============
1. Every failure surfaces as a typed ErrorCode
2. Publication never changes a dispatch result
3. Randomness is injected, never global
"""

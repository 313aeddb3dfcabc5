"""Data access managers for the chat runtime.

Each module provides async functions (or a small stateless class) that
encapsulate event-log and registry operations plus their business rules.
Managers accept ``AsyncSession`` and ``EventLogStore`` parameters and raise
domain exceptions (``LookupError``, ``ValueError``, ``PermissionError``),
never HTTP exceptions -- that translation is the router's responsibility.
"""

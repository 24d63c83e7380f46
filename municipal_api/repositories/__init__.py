"""
Repository layer for data access.

Repositories encapsulate SQLAlchemy queries. Scoped reads take a visibility
predicate built by the services from the caller's IdentityContext, so no
query here ever runs without a scope restriction.
"""

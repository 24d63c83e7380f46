"""
Core application utilities for settings and FastAPI dependencies.

This package provides:
- Application-level settings (separate from DB settings)
- Identity context, domain errors and logging context
- Dependency helpers (identity resolution, operation authorization)
"""

"""
Shared services for the HIMS store.

Modules:
- config: environment-driven settings
- logging_setup: root logger configuration
- credentials: bearer credential slot
- sync_client: async HTTP client with retry, backoff and 401 handling
- patients_api: patient resource endpoints
"""

__all__ = [
    "config",
    "logging_setup",
    "credentials",
    "sync_client",
    "patients_api",
]

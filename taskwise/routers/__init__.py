"""FastAPI routers for the service.

Routers are grouped by domain (chat turns, sessions, provider config).
"""

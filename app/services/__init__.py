"""
Service layer for the media gateway.

Services encapsulate the payment protocol, generation pipeline, and
storage operations, providing a clean interface for routes and the
background cleanup worker.

Submodules are imported directly (app.services.route_registry, ...) so the
route registry stays importable without database settings, e.g. from the CLI.
"""

"""Survey gateway - data access core for the multi-tenant survey platform.

Key Responsibilities:
    - Expose the request-scoped loaders, authorization gate and services that
      back the operation graph
    - Provide the FastAPI application factory serving operations and events

Collaborators:
    - Upstream: ASGI servers and embedding applications
    - Downstream: Backing store, identity provider and notification bus

Side Effects:
    - None at import time

Example:
    >>> from survey_gateway.gateway.app import create_app
    >>> app = create_app()
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

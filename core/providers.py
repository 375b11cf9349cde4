from __future__ import annotations

from fastapi import Request

from providers.factory import Providers


def providers_from_request(request: Request) -> Providers:
    """
    Canonical provider accessor for request handlers.

    Providers are attached once during app startup as request.app.state.providers.
    """
    providers = getattr(request.app.state, "providers", None)
    if providers is None:
        raise RuntimeError("Providers not initialized on app.state (startup/lifespan not executed).")
    return providers

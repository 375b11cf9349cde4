from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from providers import factory
from providers.factory import Providers, get_providers

log = logging.getLogger(__name__)


def init_providers(app: FastAPI, providers: Optional[Providers] = None) -> Providers:
    """
    Composition root for the storage backend.
    Called once during app startup/lifespan. Attaches Providers onto app.state.
    """
    app.state.providers = providers or get_providers()
    return app.state.providers


def shutdown_providers(app: FastAPI) -> None:
    providers = getattr(app.state, "providers", None)
    if providers is None:
        return
    if providers is factory.cached_providers():
        # process-wide instance: clear the cache along with it
        factory.close_providers()
    else:
        providers.close()
    app.state.providers = None
    log.info("Storage provider closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_providers(app)
    try:
        yield
    finally:
        shutdown_providers(app)

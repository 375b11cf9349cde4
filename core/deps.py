from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from core.providers import providers_from_request
from gateway.aio import AsyncStorageGateway
from gateway.service import StorageGateway
from providers.factory import Providers


# -----------------------------
# Canonical provider access
# -----------------------------

def get_providers(request: Request) -> Providers:
    """
    Canonical runtime provider resolver.

    Source of truth: request.app.state.providers
    """
    return providers_from_request(request)


ProvidersDep = Annotated[Providers, Depends(get_providers)]


# -----------------------------
# Canonical gateway deps
# -----------------------------

def get_gateway(request: Request) -> StorageGateway:
    return StorageGateway(get_providers(request))


GatewayDep = Annotated[StorageGateway, Depends(get_gateway)]


def get_async_gateway(request: Request) -> AsyncStorageGateway:
    return AsyncStorageGateway(get_gateway(request))


AsyncGatewayDep = Annotated[AsyncStorageGateway, Depends(get_async_gateway)]

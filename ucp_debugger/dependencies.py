"""
Request-scoped access to the process-wide store, channel, settings and
outbound client.

The instances live on app.state (built in main.create_app); tests swap them
through app.dependency_overrides.
"""
from typing import AsyncIterator, Optional

from fastapi import Depends, HTTPException, Request

from ucp_debugger.clients.ucp import UCPClient
from ucp_debugger.config import Settings
from ucp_debugger.services.broadcast import EventChannel
from ucp_debugger.services.correlation import TransactionStore
from ucp_debugger.services.webhook import WebhookIngestor


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> TransactionStore:
    return request.app.state.store


def get_channel(request: Request) -> EventChannel:
    return request.app.state.channel


def get_ingestor(
    store: TransactionStore = Depends(get_store),
    channel: EventChannel = Depends(get_channel),
    settings: Settings = Depends(get_settings),
) -> WebhookIngestor:
    return WebhookIngestor(
        store,
        channel,
        uncorrelated_transaction_id=settings.get_uncorrelated_transaction_id(),
    )


async def get_ucp_client(
    base_url: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    store: TransactionStore = Depends(get_store),
) -> AsyncIterator[UCPClient]:
    """Fresh outbound client per call, pointed at ?base_url= or UCP_BASE_URL."""
    url = base_url or settings.get_ucp_base_url()
    if not url:
        raise HTTPException(status_code=400, detail="No UCP server: pass base_url or set UCP_BASE_URL")
    client = UCPClient(
        url,
        store,
        platform_profile=settings.get_platform_profile(),
        api_key=settings.get_api_key(),
        timeout=settings.get_http_timeout(),
    )
    try:
        yield client
    finally:
        await client.aclose()

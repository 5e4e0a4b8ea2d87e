import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI

from ucp_debugger.config import Settings
from ucp_debugger.dependencies import get_channel, get_store
from ucp_debugger.schemas.responses import ServiceStatus
from ucp_debugger.services.broadcast import EventChannel
from ucp_debugger.services.correlation import TransactionStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("UCP debugger ready; webhooks at /api/webhook/*, live events at /api/events")
    yield
    # Transaction history lives only for the life of the process
    app.state.store.clear()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="UCP Debugger",
        description="Correlates UCP requests, responses and webhooks into live transaction timelines",
        version="1.0.0",
        lifespan=lifespan,
    )

    channel = EventChannel()
    app.state.settings = settings
    app.state.channel = channel
    app.state.store = TransactionStore(channel=channel)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": "ucp-debugger"}

    @app.get("/api/status", response_model=ServiceStatus)
    def service_status(
        store: TransactionStore = Depends(get_store),
        channel: EventChannel = Depends(get_channel),
    ):
        return ServiceStatus(
            transactions=len(store),
            orphans=store.orphan_count(),
            observers=channel.count,
        )

    from ucp_debugger.routers import events, transactions, ucp, webhook
    app.include_router(webhook.router, prefix="/api/webhook", tags=["webhook"])
    app.include_router(events.router, prefix="/api", tags=["events"])
    app.include_router(transactions.router, prefix="/api/transactions", tags=["transactions"])
    app.include_router(ucp.router, prefix="/api/ucp", tags=["ucp"])

    return app


app = create_app()

"""HTTP binding of the crawlsearch query surface.

Run with ``uvicorn server.rag_api:app``.
"""

import logging
import math
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterable, List, Optional

import redis.asyncio as aioredis
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.settings import Settings
from indexer.embeddings import HashEmbedder
from indexer.hybrid_search import HybridSearchEngine
from indexer.postgres_adapter import PostgresAdapter
from observability.logging import setup_logging
from observability.prometheus_metrics import get_metrics_payload, setup_prometheus_metrics
from pipelines.seeds import SeedQueueManager
from services.shared.errors import (
    EmptyQuery, InvalidInput, InvalidURL, ServiceShuttingDown, StorageError
)
from services.shared.models import BulkEnqueueResult, EnqueueResult, HostInfo, ScoredResult

logger = logging.getLogger(__name__)


def parse_limit(raw: Optional[str]) -> Optional[int]:
    """Read the ``limit`` query parameter; anything unparseable means "use the default"."""
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.debug(f"Ignoring non-numeric limit {raw!r}")
        return None
    if not math.isfinite(value):
        return None
    return int(value)


class CrawlRequest(BaseModel):
    url: Optional[str] = None


class SearchService:
    """The operations a service layer binds to: search, seed and host management."""

    def __init__(self, store: Any, seeds: SeedQueueManager, engine: HybridSearchEngine):
        self.store = store
        self.seeds = seeds
        self.engine = engine

    async def search(self, query: str, limit: Optional[int] = None) -> List[ScoredResult]:
        return await self.engine.search(query, limit)

    async def enqueue_seed(self, url: str) -> EnqueueResult:
        return await self.seeds.enqueue(url)

    async def enqueue_seeds_for_hosts(self, hosts: Iterable[str]) -> BulkEnqueueResult:
        return await self.seeds.enqueue_for_hosts(hosts)

    async def list_hosts(self) -> List[HostInfo]:
        return await self.store.list_hosts()

    async def rescan_known_hosts(self) -> BulkEnqueueResult:
        """Re-seed every host that has ever been ingested."""
        hosts = await self.list_hosts()
        return await self.enqueue_seeds_for_hosts(host.hostname for host in hosts)

    def begin_shutdown(self) -> None:
        self.engine.close()


async def build_service(settings: Settings) -> tuple:
    """Connect to PostgreSQL and Redis. Returns ``(service, closer)``."""
    store = PostgresAdapter(settings.postgres)
    await store.initialize()
    redis_client = aioredis.from_url(settings.redis.url)
    engine = HybridSearchEngine(store, HashEmbedder(settings.indexing.embedding_dimensions), settings.search)
    service = SearchService(store, SeedQueueManager(redis_client, settings.redis), engine)

    async def close():
        await store.close()
        await redis_client.aclose()

    return service, close


def get_service(request: Request) -> SearchService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return service


def create_app(service: Optional[SearchService] = None,
               settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. Without ``service``, connections are opened on startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        closer = None
        if service is None:
            active_settings = settings or Settings.from_env()
            setup_logging(
                level=active_settings.logging.level,
                service_name="crawlsearch-api",
                log_file=active_settings.logging.log_file,
                use_json=active_settings.logging.use_json,
            )
            app.state.service, closer = await build_service(active_settings)
        else:
            app.state.service = service
        logger.info("Search API started")
        try:
            yield
        finally:
            # New searches fail fast from here on; in-flight ones finish.
            app.state.service.begin_shutdown()
            if closer is not None:
                await closer()
            logger.info("Search API stopped")

    app = FastAPI(title="crawlsearch API", version="0.1.0", lifespan=lifespan)
    setup_prometheus_metrics(app)

    @app.get("/health")
    async def health(request: Request) -> Dict[str, str]:
        current = getattr(request.app.state, "service", None)
        if current is None or current.engine.closing:
            return {"status": "shutting_down"}
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        body, content_type = get_metrics_payload()
        return Response(content=body, media_type=content_type)

    @app.get("/search")
    async def search(q: Optional[str] = Query(default=None),
                     limit: Optional[str] = Query(default=None),
                     svc: SearchService = Depends(get_service)) -> Dict[str, Any]:
        try:
            results = await svc.search(q or "", parse_limit(limit))
        except EmptyQuery:
            raise HTTPException(status_code=400, detail="Query parameter 'q' is required.")
        except ServiceShuttingDown as e:
            raise HTTPException(status_code=503, detail=str(e))
        except StorageError as e:
            logger.error(f"Search failed: {e}")
            raise HTTPException(status_code=500, detail="Search failed")
        return {"results": [r.model_dump() for r in results]}

    @app.post("/crawl")
    async def crawl(body: Optional[CrawlRequest] = Body(default=None),
                    svc: SearchService = Depends(get_service)) -> Dict[str, Any]:
        raw_url = (body.url or "").strip() if body else ""
        if not raw_url:
            raise HTTPException(status_code=400, detail="Missing 'url' in request body.")
        try:
            result = await svc.enqueue_seed(raw_url)
        except InvalidURL as e:
            raise HTTPException(status_code=400, detail=f"Invalid URL: {e.reason}")
        except StorageError as e:
            logger.error(f"Failed to enqueue crawl request: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to enqueue URL: {e}")
        return {
            "url": result.url,
            "queue": svc.seeds.queue_key,
            "already_queued": not result.added,
        }

    @app.post("/admin/rescan")
    async def rescan(svc: SearchService = Depends(get_service)) -> Dict[str, Any]:
        try:
            result = await svc.rescan_known_hosts()
        except StorageError as e:
            logger.error(f"Failed to schedule recrawl: {e}")
            raise HTTPException(status_code=500, detail="Failed to schedule recrawl.")
        return {
            "attempted": result.attempted,
            "enqueued": result.added,
            "queue": svc.seeds.queue_key,
        }

    @app.get("/hosts")
    async def hosts(svc: SearchService = Depends(get_service)) -> Dict[str, Any]:
        try:
            host_list = await svc.list_hosts()
        except StorageError as e:
            logger.error(f"Failed to fetch crawled sites: {e}")
            raise HTTPException(status_code=500, detail="Failed to retrieve hostnames.")
        return {"hosts": [h.to_dict() for h in host_list]}

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ServiceShuttingDown)
    async def shutting_down_handler(request: Request, exc: ServiceShuttingDown) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    return app


app = create_app()

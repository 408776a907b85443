from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status

from . import models
from .config import get_settings, log_settings_summary
from .coordinator import RetrievalCoordinator, build_coordinator
from .errors import UnifiedRagError
from .logging_utils import get_logger

logger = get_logger("unified_rag.main", service="unified_rag")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    log_settings_summary(logger, settings)
    coordinator = await build_coordinator(settings)
    app.state.coordinator = coordinator
    logger.info(
        f"UnifiedRAG service initialized - Instance: {settings.instance_id}, "
        f"Redis: {settings.redis_host}:{settings.redis_port}, Qdrant: {settings.qdrant_url}"
    )

    yield # App is running

    logger.info("Shutting down...")
    await coordinator.close()


app = FastAPI(title="UnifiedRAG Retrieval Service", lifespan=lifespan)


def get_coordinator(request: Request) -> RetrievalCoordinator:
    """Dependency to get the RetrievalCoordinator from the application state."""
    if getattr(request.app.state, "coordinator", None) is None:
        raise HTTPException(status_code=503, detail="Retrieval coordinator is not available.")
    return request.app.state.coordinator


def _error_status(error: UnifiedRagError) -> int:
    if error.retryable:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_502_BAD_GATEWAY


@app.post("/rag/search", response_model=models.SearchResult)
async def rag_search(req: models.SearchRequest, coordinator: RetrievalCoordinator = Depends(get_coordinator)):
    try:
        return await coordinator.search(req)
    except UnifiedRagError as e:
        logger.error(f"Search failed: {e}")
        raise HTTPException(
            status_code=_error_status(e),
            detail=f"Search failed: {e}. Please check that Qdrant is running and accessible.",
        )


@app.post("/rag/store", response_model=models.StoreResult)
async def rag_store(req: models.StoreRequest, coordinator: RetrievalCoordinator = Depends(get_coordinator)):
    try:
        return await coordinator.store(req)
    except UnifiedRagError as e:
        logger.error(f"Store failed: {e}")
        raise HTTPException(status_code=_error_status(e), detail=f"Store failed: {e}")


@app.get("/rag/memories/{memory_id}", response_model=models.Memory)
async def get_memory(memory_id: str, coordinator: RetrievalCoordinator = Depends(get_coordinator)):
    try:
        memory = await coordinator.get(memory_id)
    except UnifiedRagError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    if memory is None:
        raise HTTPException(status_code=404, detail=f"Memory {memory_id} not found")
    return memory


@app.delete("/rag/memories/{memory_id}")
async def forget_memory(memory_id: str, coordinator: RetrievalCoordinator = Depends(get_coordinator)):
    try:
        warnings = await coordinator.forget(memory_id)
    except UnifiedRagError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))
    return {"status": "ok", "memory_id": memory_id, "warnings": warnings}


@app.get("/rag/stats", response_model=models.CacheStats)
async def rag_stats(coordinator: RetrievalCoordinator = Depends(get_coordinator)):
    try:
        return await coordinator.stats()
    except UnifiedRagError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))


@app.get("/healthz")
async def health_check(response: Response, coordinator: RetrievalCoordinator = Depends(get_coordinator)):
    checks = await coordinator.ping()
    ok = all(value == "ok" for value in checks.values())
    response.status_code = status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "ok" if ok else "degraded", "checks": checks}


@app.get("/metrics")
def get_metrics(coordinator: RetrievalCoordinator = Depends(get_coordinator)):
    return coordinator.metrics.get_report()


def run():
    import uvicorn
    uvicorn.run("unified_rag.main:app", host="0.0.0.0", port=7060)


if __name__ == "__main__":
    run()

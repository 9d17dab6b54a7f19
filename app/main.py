"""FastAPI application entry point"""

from fastapi import Depends, FastAPI, BackgroundTasks, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from typing import Dict, Any, Optional
import asyncio
import logging

from app.config.database import get_db, init_db, SessionLocal
from app.config.settings import settings
from app.models.background_job import JobType
from app.orchestrator_repos import RepoCrawlerOrchestrator
from app.services.repos.job_ledger import JobAlreadyRunningError
from app.services.repos.leaderboard import InvalidCursorError, RepositoryLeaderboard

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    description="Top GitHub repository sync, enrichment and leaderboard",
    version=settings.APP_VERSION,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global orchestrator instance
orchestrator = RepoCrawlerOrchestrator()

# Startup sync task, kept referenced so it is not garbage collected
_startup_tasks: set = set()


def _claim_or_conflict(job_type: JobType, repository_id: Optional[int] = None) -> int:
    try:
        return orchestrator.claim_job(job_type, repository_id=repository_id)
    except JobAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


def _ensure_repository(db, repository_id: Optional[int]) -> None:
    if repository_id is not None and not RepositoryLeaderboard(db).exists(repository_id):
        raise HTTPException(status_code=404, detail=f"Repository not found: {repository_id}")


def _accepted(job_type: str, job_id: Optional[int], message: str, **extra: Any) -> Dict[str, Any]:
    return {"status": "started", "job_type": job_type, "job_id": job_id, "message": message, **extra}


@app.on_event("startup")
async def sync_on_startup():
    """Kick off a quick sync when enabled and the store is still empty"""
    if not settings.SYNC_DATA_ON_STARTUP:
        return

    init_db()
    db = SessionLocal()
    try:
        existing = RepositoryLeaderboard(db).count_repositories()
    finally:
        db.close()

    if existing > 0:
        logger.info(f"Startup sync skipped: {existing} repositories already stored")
        return

    try:
        job_id = orchestrator.claim_job(JobType.REPOSITORY_SYNC)
    except JobAlreadyRunningError as exc:
        logger.info(f"Startup sync skipped: {exc}")
        return

    logger.info("Store is empty, starting quick sync")
    task = asyncio.create_task(orchestrator.run_quick_sync(job_id=job_id))
    _startup_tasks.add(task)
    task.add_done_callback(_startup_tasks.discard)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/api/health",
            "stats": "/api/stats",
            "quick_sync": "POST /api/sync/quick",
            "comprehensive_sync": "POST /api/sync/comprehensive",
            "contributors": "POST /api/workers/update-contributors?repository_id=",
            "commit_activity": "POST /api/workers/update-commit-activity?repository_id=",
            "run_all": "POST /api/workers/run-all",
            "job_status": "GET /api/jobs/{job_type}",
            "top_repositories": "GET /api/repos/top?limit=&last_stars=&last_id=",
            "search": "GET /api/repos/search?full_name=",
            "details": "GET /api/repos/{id}/details",
        }
    }


@app.get("/api/health")
async def health_check():
    """Health check endpoint for serverless platforms"""
    return {
        "status": "healthy",
        "service": "githop-crawler",
        "version": settings.APP_VERSION
    }


@app.get("/api/stats")
def get_stats(db=Depends(get_db)):
    """Totals over the stored repository set"""
    return RepositoryLeaderboard(db).totals()


@app.post("/api/sync/quick", status_code=202)
async def sync_quick(background_tasks: BackgroundTasks):
    """Trigger the quick top-repository sync"""
    job_id = _claim_or_conflict(JobType.REPOSITORY_SYNC)
    logger.info(f"Quick sync triggered (job {job_id})")

    async def run_sync():
        try:
            stats = await orchestrator.run_quick_sync(job_id=job_id)
            logger.info(f"Quick sync finished: success={stats.get('success')}")
        except Exception as e:
            logger.error(f"Quick sync failed: {e}", exc_info=True)

    background_tasks.add_task(run_sync)
    return _accepted(
        JobType.REPOSITORY_SYNC.value,
        job_id,
        f"Quick sync of top {settings.SYNC_QUICK_TARGET} repositories started in background",
        mode="quick",
    )


@app.post("/api/sync/comprehensive", status_code=202)
async def sync_comprehensive(background_tasks: BackgroundTasks):
    """Trigger the comprehensive top-repository sync"""
    job_id = _claim_or_conflict(JobType.REPOSITORY_SYNC)
    logger.info(f"Comprehensive sync triggered (job {job_id})")

    async def run_sync():
        try:
            stats = await orchestrator.run_comprehensive_sync(job_id=job_id)
            logger.info(f"Comprehensive sync finished: success={stats.get('success')}")
        except Exception as e:
            logger.error(f"Comprehensive sync failed: {e}", exc_info=True)

    background_tasks.add_task(run_sync)
    return _accepted(
        JobType.REPOSITORY_SYNC.value,
        job_id,
        f"Comprehensive sync of top {settings.SYNC_COMPREHENSIVE_TARGET} repositories started in background",
        mode="comprehensive",
    )


@app.post("/api/workers/update-contributors", status_code=202)
async def update_contributors(
    background_tasks: BackgroundTasks,
    repository_id: Optional[int] = None,
    db=Depends(get_db),
):
    """Refresh contributors for one repository or the stored batch"""
    _ensure_repository(db, repository_id)
    job_id = _claim_or_conflict(JobType.CONTRIBUTORS, repository_id)
    logger.info(f"Contributors refresh triggered (job {job_id}, repository {repository_id})")

    async def run_worker():
        try:
            stats = await orchestrator.run_contributors_refresh(repository_id=repository_id, job_id=job_id)
            logger.info(f"Contributors refresh finished: success={stats.get('success')}")
        except Exception as e:
            logger.error(f"Contributors refresh failed: {e}", exc_info=True)

    background_tasks.add_task(run_worker)
    return _accepted(
        JobType.CONTRIBUTORS.value,
        job_id,
        "Contributors refresh started in background",
        repository_id=repository_id,
    )


@app.post("/api/workers/update-commit-activity", status_code=202)
async def update_commit_activity(
    background_tasks: BackgroundTasks,
    repository_id: Optional[int] = None,
    db=Depends(get_db),
):
    """Refresh weekly commit activity for one repository or the stored batch"""
    _ensure_repository(db, repository_id)
    job_id = _claim_or_conflict(JobType.COMMIT_ACTIVITY, repository_id)
    logger.info(f"Commit activity refresh triggered (job {job_id}, repository {repository_id})")

    async def run_worker():
        try:
            stats = await orchestrator.run_commit_activity_refresh(repository_id=repository_id, job_id=job_id)
            logger.info(f"Commit activity refresh finished: success={stats.get('success')}")
        except Exception as e:
            logger.error(f"Commit activity refresh failed: {e}", exc_info=True)

    background_tasks.add_task(run_worker)
    return _accepted(
        JobType.COMMIT_ACTIVITY.value,
        job_id,
        "Commit activity refresh started in background",
        repository_id=repository_id,
    )


@app.post("/api/workers/run-all", status_code=202)
async def run_all_workers(background_tasks: BackgroundTasks):
    """Run contributors then commit activity refreshes sequentially"""
    for job_type in (JobType.CONTRIBUTORS, JobType.COMMIT_ACTIVITY):
        if orchestrator.ledger.is_running(job_type):
            raise HTTPException(status_code=409, detail=f"{job_type.value} job is already running")
    logger.info("All enrichment workers triggered")

    async def run_all():
        try:
            stats = await orchestrator.run_all_enrichment()
            logger.info(f"Enrichment workers finished: success={stats.get('success')}")
        except Exception as e:
            logger.error(f"Enrichment workers failed: {e}", exc_info=True)

    background_tasks.add_task(run_all)
    return {
        "status": "started",
        "jobs": [JobType.CONTRIBUTORS.value, JobType.COMMIT_ACTIVITY.value],
        "message": "Enrichment workers started in background"
    }


@app.get("/api/jobs/{job_type}")
def get_job_status(job_type: str):
    """Latest ledger entry for a job type"""
    try:
        normalized = JobType(job_type)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown job type: {job_type}")

    latest = orchestrator.ledger.latest_job(normalized)
    if latest is None:
        return {"job_type": normalized.value, "status": None}
    return latest


@app.get("/api/repos/top")
def top_repositories(
    limit: Optional[int] = Query(default=None, ge=1),
    last_stars: Optional[int] = Query(default=None, ge=0),
    last_id: Optional[int] = Query(default=None, ge=1),
    db=Depends(get_db),
):
    """Stars-descending leaderboard page with a (last_stars, last_id) cursor"""
    try:
        return RepositoryLeaderboard(db).list_top(limit=limit, last_stars=last_stars, last_id=last_id)
    except InvalidCursorError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/api/repos/search")
def search_repository(full_name: str = Query(..., min_length=3), db=Depends(get_db)):
    """Look up one repository by owner/name"""
    repository = RepositoryLeaderboard(db).get_by_full_name(full_name)
    if repository is None:
        raise HTTPException(status_code=404, detail=f"Repository not found: {full_name}")
    return repository


@app.get("/api/repos/{repository_id}/details")
def repository_details(repository_id: int, db=Depends(get_db)):
    """Repository with stats and language breakdown"""
    details = RepositoryLeaderboard(db).get_details(repository_id)
    if details is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    return details


@app.get("/api/repos/{repository_id}/contributors")
def repository_contributors(repository_id: int, db=Depends(get_db)):
    leaderboard = RepositoryLeaderboard(db)
    if not leaderboard.exists(repository_id):
        raise HTTPException(status_code=404, detail="Repository not found")
    return {"repository_id": repository_id, "contributors": leaderboard.list_contributors(repository_id)}


@app.get("/api/repos/{repository_id}/commit-activity")
def repository_commit_activity(repository_id: int, db=Depends(get_db)):
    leaderboard = RepositoryLeaderboard(db)
    if not leaderboard.exists(repository_id):
        raise HTTPException(status_code=404, detail="Repository not found")
    return {"repository_id": repository_id, "weeks": leaderboard.list_commit_activity(repository_id)}


# AWS Lambda handler
def lambda_handler(event: Dict[str, Any], context: Any):
    """
    AWS Lambda handler

    Scheduled events carry a "source" and run a job synchronously; anything
    else is treated as an API Gateway HTTP request.
    """
    if "source" in event:
        from app.handler import lambda_handler as scheduled_handler
        return scheduled_handler(event, context)

    from mangum import Mangum
    handler = Mangum(app)
    return handler(event, context)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )

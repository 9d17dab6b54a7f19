"""Top-repository sync and enrichment entrypoints."""

from __future__ import annotations

from typing import Any

from app.orchestrator_repos import MODE_COMPREHENSIVE, MODE_QUICK, RepoCrawlerOrchestrator

SYNC_MODES = (MODE_QUICK, MODE_COMPREHENSIVE)


def normalize_sync_mode(mode: Any, *, default: str = MODE_QUICK) -> str:
    """Map free-form mode input onto a known sync mode."""
    if mode is None:
        return default
    text = str(mode).strip().lower()
    if text in ("full", "all"):
        return MODE_COMPREHENSIVE
    return text if text in SYNC_MODES else default


def parse_repository_id(raw: Any) -> int | None:
    """Parse an optional single repository id from event payloads/query params."""
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = int(text)
    except ValueError:
        return None
    return value if value > 0 else None


async def run_repository_sync(
    *,
    orchestrator: RepoCrawlerOrchestrator | None = None,
    mode: Any = None,
    job_id: int | None = None,
) -> dict[str, Any]:
    job_orchestrator = orchestrator or RepoCrawlerOrchestrator()
    if normalize_sync_mode(mode) == MODE_COMPREHENSIVE:
        return await job_orchestrator.run_comprehensive_sync(job_id=job_id)
    return await job_orchestrator.run_quick_sync(job_id=job_id)


async def run_contributors_refresh(
    *,
    orchestrator: RepoCrawlerOrchestrator | None = None,
    repository_id: Any = None,
    job_id: int | None = None,
) -> dict[str, Any]:
    job_orchestrator = orchestrator or RepoCrawlerOrchestrator()
    return await job_orchestrator.run_contributors_refresh(
        repository_id=parse_repository_id(repository_id),
        job_id=job_id,
    )


async def run_commit_activity_refresh(
    *,
    orchestrator: RepoCrawlerOrchestrator | None = None,
    repository_id: Any = None,
    job_id: int | None = None,
) -> dict[str, Any]:
    job_orchestrator = orchestrator or RepoCrawlerOrchestrator()
    return await job_orchestrator.run_commit_activity_refresh(
        repository_id=parse_repository_id(repository_id),
        job_id=job_id,
    )


async def run_all_enrichment(*, orchestrator: RepoCrawlerOrchestrator | None = None) -> dict[str, Any]:
    """Run contributors then commit-activity refreshes over the stored set."""
    job_orchestrator = orchestrator or RepoCrawlerOrchestrator()
    return await job_orchestrator.run_all_enrichment()

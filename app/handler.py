"""
AWS Lambda entrypoint for GitHop Crawler

Pure event-driven Lambda handler triggered by EventBridge Scheduler.
No FastAPI or HTTP server logic - just direct function invocation.
"""

import asyncio
import logging
from typing import Dict, Any, Optional

from app.jobs.repo_sync import (
    run_all_enrichment,
    run_commit_activity_refresh,
    run_contributors_refresh,
    run_repository_sync,
)
from app.orchestrator_repos import MODE_COMPREHENSIVE, MODE_QUICK, RepoCrawlerOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Instantiate orchestrator once per Lambda execution environment
orchestrator = RepoCrawlerOrchestrator()


def lambda_handler(event: Optional[Dict[str, Any]], context: Any) -> Dict[str, Any]:
    """
    AWS Lambda entrypoint for the GitHop crawler.

    Dispatches on `event["source"]`:
    - {"source": "quick_sync"}
    - {"source": "comprehensive_sync"}
    - {"source": "contributors", "repository_id": 123}  (repository_id optional)
    - {"source": "commit_activity", "repository_id": 123}  (repository_id optional)
    - {"source": "enrichment"}

    Default is "quick_sync" if no source is provided. A job that reports
    failure (including "already running") returns statusCode 500.
    """
    payload = event or {}
    source = payload.get("source", "quick_sync")
    logger.info(f"Lambda invoked with source: {source}")

    try:
        if source == "quick_sync":
            result = asyncio.run(run_repository_sync(orchestrator=orchestrator, mode=MODE_QUICK))

        elif source == "comprehensive_sync":
            result = asyncio.run(run_repository_sync(orchestrator=orchestrator, mode=MODE_COMPREHENSIVE))

        elif source == "contributors":
            result = asyncio.run(
                run_contributors_refresh(orchestrator=orchestrator, repository_id=payload.get("repository_id"))
            )

        elif source == "commit_activity":
            result = asyncio.run(
                run_commit_activity_refresh(orchestrator=orchestrator, repository_id=payload.get("repository_id"))
            )

        elif source == "enrichment":
            result = asyncio.run(run_all_enrichment(orchestrator=orchestrator))

        else:
            error_msg = f"Unknown source: {source}"
            logger.error(error_msg)
            raise ValueError(error_msg)

        success = bool(result.get("success"))
        logger.info(f"Job {source} finished: success={success}")

        return {
            "statusCode": 200 if success else 500,
            "source": source,
            "result": result,
        }

    except Exception as e:
        logger.error(f"Lambda execution failed: {e}", exc_info=True)
        return {
            "statusCode": 500,
            "source": source,
            "error": str(e),
        }


# Allow local testing via `python -m app.handler`
if __name__ == "__main__":
    import sys

    test_event = {"source": sys.argv[1] if len(sys.argv) > 1 else "quick_sync"}
    print(f"Testing with event: {test_event}")
    print(lambda_handler(test_event, None))

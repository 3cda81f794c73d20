"""Execution of a single import task."""
import logging
from typing import Any, Dict, Optional
from api.services.queue_service import ImportTask
from consumer.feed_parser import FeedParser
from consumer.fetcher import FeedFetcher
from consumer.normalizer import JobNormalizer
from consumer.reconciler import ImportReconciler
from database.repositories.import_log_repo import ImportLogRepository
from database.repositories.job_repo import JobRepository
from shared.exceptions import TaskExecutionError
from shared.utils import elapsed_ms, get_utc_now

logger = logging.getLogger(__name__)

NO_JOBS_FOUND = "No jobs found in feed"


class ImportTaskRunner:
    """Runs Fetch -> Parse -> Normalize -> Reconcile for one task.

    The import log is finalized here: completed when the run finished
    (including feeds with nothing to import) and failed when the feed could
    not be fetched or parsed. Fetch/parse failures are re-raised as
    TaskExecutionError so the queue can retry them.
    """

    def __init__(
        self,
        job_repo: JobRepository,
        import_log_repo: ImportLogRepository,
        fetcher: Optional[FeedFetcher] = None,
        parser: Optional[FeedParser] = None,
        normalizer: Optional[JobNormalizer] = None,
        reconciler: Optional[ImportReconciler] = None
    ):
        self.import_log_repo = import_log_repo
        self.fetcher = fetcher or FeedFetcher()
        self.parser = parser or FeedParser()
        self.normalizer = normalizer or JobNormalizer()
        self.reconciler = reconciler or ImportReconciler(job_repo, import_log_repo)

    async def run(self, task: ImportTask) -> Dict[str, Any]:
        source_url = task.source_url
        log_id = task.import_log_id
        started_at = get_utc_now()

        logger.info(f"Processing import for: {source_url} (task {task.task_id}, attempt {task.attempts_made + 1})")

        # No-op unless an earlier attempt already finalized the log
        await self.import_log_repo.reopen(log_id)

        try:
            body = await self.fetcher.fetch(source_url)
            items = self.parser.parse(body)
        except Exception as e:
            logger.error(f"Import failed for {source_url}: {e}")
            await self.import_log_repo.fail_import_log(log_id, str(e), elapsed_ms(started_at))
            raise TaskExecutionError(source_url, str(e)) from e

        normalized = self.normalizer.normalize_items(items, source_url)

        if not normalized.candidates:
            message = NO_JOBS_FOUND
            if normalized.dropped:
                message = f"{NO_JOBS_FOUND} ({len(normalized.dropped)} items failed validation)"
            logger.warning(f"{message}: {source_url}")

            counters = {"total_fetched": len(items)}
            await self.import_log_repo.complete_import_log(
                log_id,
                counters,
                [{"message": message, "data": None, "timestamp": get_utc_now()}],
                elapsed_ms(started_at)
            )
            return {"success": True, "stats": {"message": message, "total_fetched": len(items)}}

        try:
            stats = await self.reconciler.reconcile(
                normalized.candidates,
                source_url,
                log_id,
                total_fetched=len(items)
            )
        except Exception as e:
            logger.error(f"Import failed for {source_url} while saving jobs: {e}")
            await self.import_log_repo.fail_import_log(log_id, str(e), elapsed_ms(started_at))
            raise

        processing_time = elapsed_ms(started_at)
        await self.import_log_repo.complete_import_log(
            log_id,
            stats.counters(),
            stats.error_details,
            processing_time
        )

        result = stats.counters()
        result["dropped_jobs"] = len(normalized.dropped)
        result["processing_time"] = processing_time
        return {"success": True, "stats": result}

"""Reconciliation of job candidates against the Jobs collection."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from consumer.normalizer import JobCandidate
from database.repositories.import_log_repo import ImportLogRepository
from database.repositories.job_repo import JobRepository
from shared.config import settings
from shared.utils import get_utc_now

logger = logging.getLogger(__name__)


class OutcomeKind:
    NEW = "new"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class ReconcileOutcome:
    """Result of reconciling one candidate."""
    kind: str
    candidate: JobCandidate
    error: Optional[str] = None
    exception: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.kind != OutcomeKind.FAILED


@dataclass
class ImportStats:
    """Running statistics for one import run."""
    total_fetched: int = 0
    new_jobs: int = 0
    updated_jobs: int = 0
    failed_jobs: int = 0
    skipped_jobs: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_imported(self) -> int:
        return self.new_jobs + self.updated_jobs

    def counters(self) -> Dict[str, int]:
        return {
            "total_fetched": self.total_fetched,
            "total_imported": self.total_imported,
            "new_jobs": self.new_jobs,
            "updated_jobs": self.updated_jobs,
            "failed_jobs": self.failed_jobs,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.counters()
        data["error_details"] = list(self.error_details)
        return data


class ImportReconciler:
    """Upserts candidates one at a time, in feed order, checkpointing progress."""

    def __init__(
        self,
        job_repo: JobRepository,
        import_log_repo: ImportLogRepository,
        checkpoint_interval: Optional[int] = None,
        max_error_details: Optional[int] = None
    ):
        self.job_repo = job_repo
        self.import_log_repo = import_log_repo
        self.checkpoint_interval = checkpoint_interval or settings.checkpoint_interval
        self.max_error_details = max_error_details or settings.max_error_details

    async def reconcile(
        self,
        candidates: Sequence[JobCandidate],
        source_url: str,
        import_log_id: str,
        total_fetched: Optional[int] = None
    ) -> ImportStats:
        """Persist ``candidates`` and return the run statistics."""
        stats = ImportStats(total_fetched=len(candidates) if total_fetched is None else total_fetched)
        logger.info(f"Starting import of {len(candidates)} jobs from {source_url}")

        for index, candidate in enumerate(candidates):
            problems = candidate.validate()
            if problems:
                stats.skipped_jobs += 1
                logger.warning(f"Skipping invalid job {index + 1}: {'; '.join(problems)}")
                continue

            outcome = await self._reconcile_one(candidate)

            if outcome.kind == OutcomeKind.NEW:
                stats.new_jobs += 1
                logger.info(f"Created new job: \"{candidate.title}\"")
            elif outcome.kind == OutcomeKind.UPDATED:
                stats.updated_jobs += 1
                logger.info(f"Updated existing job: \"{candidate.title}\"")
            else:
                stats.failed_jobs += 1
                self._record_error(stats, outcome, index)
                logger.error(
                    f"Failed to import job {index + 1} ({candidate.external_id!r}): {outcome.error}",
                    exc_info=outcome.exception if settings.is_development else None
                )

            if outcome.ok and stats.total_imported % self.checkpoint_interval == 0:
                await self._checkpoint(import_log_id, stats)
                logger.info(f"Progress update: {stats.total_imported}/{len(candidates)} processed")

        await self._checkpoint(import_log_id, stats)

        success_rate = (stats.total_imported / stats.total_fetched * 100) if stats.total_fetched else 0.0
        logger.info(
            f"Import completed for {source_url}: fetched={stats.total_fetched} "
            f"imported={stats.total_imported} new={stats.new_jobs} updated={stats.updated_jobs} "
            f"failed={stats.failed_jobs} success_rate={success_rate:.1f}%"
        )
        return stats

    async def _reconcile_one(self, candidate: JobCandidate) -> ReconcileOutcome:
        try:
            _, is_new = await self.job_repo.upsert_job(candidate.to_document())
        except Exception as e:
            return ReconcileOutcome(
                OutcomeKind.FAILED, candidate, error=str(e) or e.__class__.__name__, exception=e
            )
        return ReconcileOutcome(OutcomeKind.NEW if is_new else OutcomeKind.UPDATED, candidate)

    def _record_error(self, stats: ImportStats, outcome: ReconcileOutcome, index: int):
        if len(stats.error_details) >= self.max_error_details:
            return
        candidate = outcome.candidate
        stats.error_details.append({
            "message": outcome.error,
            "data": {
                "external_id": candidate.external_id or "missing",
                "title": candidate.title or "missing",
                "company": candidate.company or "missing",
                "source": candidate.source or "missing",
                "index": index + 1,
            },
            "timestamp": get_utc_now(),
        })

    async def _checkpoint(self, import_log_id: str, stats: ImportStats):
        await self.import_log_repo.checkpoint(import_log_id, stats.counters())

"""
Fan-out scheduler: runs one analysis from pending to a terminal state.

The scheduler fetches one repository snapshot, dispatches one evaluation
worker per rubric item concurrently (bounded by a semaphore) and waits for
all of them to settle before sealing the analysis as completed. Item
failures stay isolated in their own result rows. Only a failure of the
orchestration itself (for example the snapshot fetch) fails the analysis.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from codereview.domain.analysis_state import (
    AnalysisStatus,
    ItemStatus,
    ProgressPhase,
    TERMINAL_ANALYSIS_STATUSES,
    is_terminal_item,
)
from codereview.domain.exceptions import (
    AnalysisError,
    ItemEvaluationError,
    ResultImmutableError,
)
from codereview.infrastructure.config.settings import settings
from codereview.schemas import RepositorySnapshot, RubricItemConfig, RubricItemPayload
from codereview.services.analysis_service import AnalysisService, AnalysisTask, ItemSnapshot
from codereview.services.evaluation.progress import (
    ProgressRegistry,
    ProgressTracker,
    progress_registry,
)
from codereview.services.evaluation.worker import EvaluationWorker
from codereview.services.external.repository_fetcher import GitHubContentFetcher
from codereview.services.llm.evaluator import StructuredEvaluator
from codereview.services.llm.retry import RetryConfig, fetch_retry_config, retry_async

logger = logging.getLogger(__name__)

UNSETTLED_ERROR = "Evaluation did not settle"


@dataclass
class FanOutSummary:
    """Outcome of one scheduler run, read back from persisted state."""

    analysis_id: str
    status: str
    total_items: int
    completed_items: int
    failed_items: int
    error_message: Optional[str] = None
    run_handle: Optional[str] = None


class FanOutScheduler:
    """Drive analyses through fetch, parallel evaluation and completion."""

    def __init__(
        self,
        analysis_service: AnalysisService,
        fetcher: Optional[GitHubContentFetcher] = None,
        evaluator: Optional[StructuredEvaluator] = None,
        retry_config: Optional[RetryConfig] = None,
        fetch_retry: Optional[RetryConfig] = None,
        max_concurrency: Optional[int] = None,
        registry: ProgressRegistry = progress_registry,
    ):
        self.analysis_service = analysis_service
        self.fetcher = fetcher or GitHubContentFetcher()
        self.evaluator = evaluator or StructuredEvaluator()
        self.retry_config = retry_config
        self.fetch_retry = fetch_retry or fetch_retry_config()
        self.max_concurrency = max(1, max_concurrency or settings.max_concurrent_evaluations)
        self.registry = registry

    async def run(self, analysis_id: str, run_handle: Optional[str] = None) -> FanOutSummary:
        """
        Run an analysis to a terminal state.

        Orchestration errors are recorded on the analysis through
        fail_analysis and are not re-raised; the returned summary reflects
        whatever was persisted.
        """
        run_handle = run_handle or f"run_{uuid.uuid4().hex[:12]}"
        tracker = self.registry.track(analysis_id)
        logger.info(f"[FanOut] Starting analysis {analysis_id} (run handle: {run_handle})")

        try:
            tracker.set_phase(ProgressPhase.INITIALIZING)
            task = self.analysis_service.get_analysis_for_task(analysis_id)
            if AnalysisStatus(task.status) in TERMINAL_ANALYSIS_STATUSES:
                logger.info(f"[FanOut] Analysis {analysis_id} is already {task.status}, nothing to do")
                return self._summary(analysis_id, run_handle)

            self.analysis_service.mark_running(analysis_id, run_handle=run_handle)
            tracker.set_items(item.rubric_item_id for item in task.items)
            for item in task.items:
                if is_terminal_item(item.status):
                    tracker.mark_item(item.rubric_item_id, item.status)

            pending = [item for item in task.items if not is_terminal_item(item.status)]
            if pending:
                tracker.set_phase(ProgressPhase.FETCHING_REPO)
                snapshot = await retry_async(
                    self.fetcher.fetch,
                    task.repository_owner,
                    task.repository_name,
                    task.branch,
                    config=self.fetch_retry,
                )

                tracker.set_phase(ProgressPhase.EVALUATING)
                await self._fan_out(task, pending, snapshot, tracker)

            tracker.set_phase(ProgressPhase.COMPLETING)
            self._sweep_unsettled(analysis_id, tracker)
            self.analysis_service.complete_analysis(analysis_id)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"[FanOut] Analysis {analysis_id} failed: {message}", exc_info=True)
            try:
                self.analysis_service.fail_analysis(analysis_id, message)
            except AnalysisError as fail_error:
                logger.error(f"[FanOut] Could not mark analysis {analysis_id} as failed: {fail_error}")
        finally:
            self.registry.discard(analysis_id)

        return self._summary(analysis_id, run_handle)

    async def _fan_out(
        self,
        task: AnalysisTask,
        items: List[ItemSnapshot],
        snapshot: RepositorySnapshot,
        tracker: ProgressTracker,
    ) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        worker = EvaluationWorker(
            self.analysis_service,
            self.evaluator,
            retry_config=self.retry_config,
            on_status=tracker.mark_item,
        )

        async def evaluate_with_semaphore(item: ItemSnapshot):
            async with semaphore:
                payload = self._build_payload(task.analysis_id, item, snapshot)
                return await worker.run(payload)

        logger.info(
            f"[FanOut] Dispatching {len(items)} evaluations for analysis {task.analysis_id} "
            f"(concurrency {self.max_concurrency})"
        )
        outcomes = await asyncio.gather(
            *(evaluate_with_semaphore(item) for item in items), return_exceptions=True
        )

        failed = 0
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, BaseException):
                failed += 1
                if not isinstance(outcome, ItemEvaluationError):
                    logger.error(
                        f"[FanOut] Evaluation of {item.rubric_item_id} raised unexpectedly: {outcome!r}"
                    )
        logger.info(
            f"[FanOut] Analysis {task.analysis_id}: {len(items) - failed} evaluations succeeded, "
            f"{failed} failed"
        )

    def _build_payload(
        self, analysis_id: str, item: ItemSnapshot, snapshot: RepositorySnapshot
    ) -> RubricItemPayload:
        try:
            return RubricItemPayload(
                analysis_id=analysis_id,
                rubric_item_id=item.rubric_item_id,
                item_name=item.item_name,
                item_description=item.item_description,
                evaluation_type=item.evaluation_type,
                config=RubricItemConfig.model_validate(item.item_config or {}),
                repository=snapshot,
            )
        except ValueError as e:
            message = f"Invalid rubric item configuration: {e}"
            self.analysis_service.update_item_result(
                analysis_id, item.rubric_item_id, ItemStatus.FAILED.value, error=message
            )
            raise ItemEvaluationError(item.rubric_item_id, message) from e

    def _sweep_unsettled(self, analysis_id: str, tracker: ProgressTracker) -> None:
        """Fail items that are still pending or processing after the join."""
        for rubric_item_id in self.analysis_service.list_unsettled_items(analysis_id):
            logger.warning(f"[FanOut] Item {rubric_item_id} of analysis {analysis_id} did not settle")
            try:
                self.analysis_service.update_item_result(
                    analysis_id, rubric_item_id, ItemStatus.FAILED.value, error=UNSETTLED_ERROR
                )
            except ResultImmutableError:
                continue
            tracker.mark_item(rubric_item_id, ItemStatus.FAILED.value)

    def _summary(self, analysis_id: str, run_handle: str) -> FanOutSummary:
        summary = self.analysis_service.get_summary(analysis_id)
        return FanOutSummary(
            analysis_id=analysis_id,
            status=summary.status,
            total_items=summary.total_items,
            completed_items=summary.completed_items,
            failed_items=summary.failed_items,
            error_message=summary.error_message,
            run_handle=summary.run_handle or run_handle,
        )

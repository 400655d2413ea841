import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from codereview.database import SessionLocal
from codereview.domain.analysis_state import (
    AnalysisStatus,
    ItemStatus,
    TERMINAL_ITEM_STATUSES,
    can_transition_analysis,
    can_transition_item,
)
from codereview.domain.exceptions import (
    AccessDeniedError,
    InvalidTransitionError,
    NotFoundError,
    ResultImmutableError,
)
from codereview.infrastructure.persistence.analysis_repository import AnalysisRepository
from codereview.infrastructure.persistence.stores import RepositoryStore, RubricStore
from codereview.infrastructure.persistence.unit_of_work import UnitOfWork
from codereview.models import Analysis, AnalysisResult, Rubric, RubricItem, User
from codereview.schemas import (
    AnalysisDetail,
    AnalysisFilters,
    AnalysisItemResult,
    AnalysisSummary,
    RubricItemRef,
)
from codereview.services.evaluation.progress import (
    ProgressAggregator,
    progress_from_state,
    progress_registry,
)
from codereview.utils import structured_logger
from codereview.utils.github_url import build_github_url, parse_github_url
from codereview.utils.timezone_utils import ensure_utc, utc_now

# Configure logging
logger = logging.getLogger(__name__)

DEFAULT_ONE_OFF_BRANCH = "main"
UNKNOWN_ERROR = "Unknown error"


@dataclass
class ItemSnapshot:
    """By-value copy of a rubric item as captured when the analysis was created."""

    rubric_item_id: str
    item_name: str
    item_description: str
    evaluation_type: str
    item_config: Dict[str, Any]
    status: str


@dataclass
class AnalysisTask:
    """Everything the fan-out scheduler needs to run an analysis."""

    analysis_id: str
    status: str
    repository_owner: str
    repository_name: str
    branch: str
    items: List[ItemSnapshot] = field(default_factory=list)


class AnalysisService:
    """
    Lifecycle of analyses and their item results.

    Every state-changing operation runs in its own unit of work and commits
    before returning, so concurrent workers and readers always observe the
    latest persisted state.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        """
        Initialize the AnalysisService.

        Args:
            session_factory: Factory for short-lived SQLAlchemy sessions
        """
        self.session_factory = session_factory

    # Creation

    def create_analysis(
        self,
        user_id: str,
        repository_id: str,
        rubric_id: str,
        branch: Optional[str] = None,
    ) -> str:
        """
        Create a pending analysis of a connected repository.

        The analysis row and one pending result per rubric item are written in
        one transaction. Evaluation is not started.

        Args:
            user_id: Caller's user id
            repository_id: Connected repository to analyze
            rubric_id: Rubric to evaluate against
            branch: Branch override (defaults to the repository's default branch)

        Returns:
            ID of the new analysis

        Raises:
            NotFoundError: If the repository or rubric does not exist
            AccessDeniedError: If the caller may not use the repository or rubric
        """
        with UnitOfWork(self.session_factory) as uow:
            session = uow.session
            self._ensure_user(session, user_id)

            repository = RepositoryStore(session).get_repository(repository_id)
            if repository is None:
                raise NotFoundError(f"Repository {repository_id} not found")
            if repository.user_id != user_id:
                raise AccessDeniedError(f"Repository {repository_id} is not accessible")

            rubric, items = self._resolve_rubric(session, user_id, rubric_id)

            analysis = Analysis(
                user_id=user_id,
                repository_id=repository.id,
                repository_url=build_github_url(repository.owner, repository.name),
                repository_owner=repository.owner,
                repository_name=repository.name,
                branch=branch or repository.default_branch,
                rubric_id=rubric.id,
            )
            analysis_id = self._insert(session, analysis, items)
            full_name = repository.full_name

        logger.info(
            f"Created analysis {analysis_id} for {full_name} "
            f"with rubric {rubric_id} ({len(items)} items)"
        )
        structured_logger.analysis_event(
            "analysis_created", analysis_id, user_id=user_id, total_items=len(items)
        )
        return analysis_id

    def create_one_off_analysis(
        self,
        user_id: str,
        repository_url: str,
        rubric_id: str,
        branch: Optional[str] = None,
    ) -> str:
        """
        Create a pending analysis of a public GitHub repository given by URL.

        Raises:
            InvalidRepositoryUrlError: If the URL cannot be parsed
            NotFoundError: If the rubric does not exist
            AccessDeniedError: If the caller may not use the rubric
        """
        parsed = parse_github_url(repository_url)

        with UnitOfWork(self.session_factory) as uow:
            session = uow.session
            self._ensure_user(session, user_id)
            rubric, items = self._resolve_rubric(session, user_id, rubric_id)

            analysis = Analysis(
                user_id=user_id,
                repository_id=None,
                repository_url=build_github_url(parsed.owner, parsed.repo),
                repository_owner=parsed.owner,
                repository_name=parsed.repo,
                branch=branch or parsed.branch or DEFAULT_ONE_OFF_BRANCH,
                rubric_id=rubric.id,
            )
            analysis_id = self._insert(session, analysis, items)

        logger.info(
            f"Created one-off analysis {analysis_id} for {parsed.owner}/{parsed.repo} "
            f"with rubric {rubric_id} ({len(items)} items)"
        )
        structured_logger.analysis_event(
            "analysis_created",
            analysis_id,
            user_id=user_id,
            total_items=len(items),
            one_off=True,
        )
        return analysis_id

    def _ensure_user(self, session: Session, user_id: str) -> User:
        user = session.query(User).filter(User.user_id == user_id).first()
        if user is None:
            logger.info(f"Creating user record for {user_id}")
            user = User(user_id=user_id)
            session.add(user)
            session.flush()
        return user

    def _resolve_rubric(
        self, session: Session, user_id: str, rubric_id: str
    ) -> Tuple[Rubric, List[RubricItem]]:
        store = RubricStore(session)
        rubric = store.get_rubric(rubric_id)
        if rubric is None:
            raise NotFoundError(f"Rubric {rubric_id} not found")
        if not rubric.is_system_template and rubric.user_id != user_id:
            raise AccessDeniedError(f"Rubric {rubric_id} is not accessible")
        return rubric, store.get_rubric_items(rubric_id)

    def _insert(self, session: Session, analysis: Analysis, items: List[RubricItem]) -> str:
        analysis.status = AnalysisStatus.PENDING.value
        analysis.total_items = len(items)
        analysis.completed_items = 0
        analysis.failed_items = 0
        analysis.created_at = utc_now()

        results = [
            AnalysisResult(
                rubric_item_id=item.id,
                item_name=item.name,
                item_description=item.description or "",
                evaluation_type=item.evaluation_type,
                item_config=dict(item.config or {}),
                position=position,
                status=ItemStatus.PENDING.value,
            )
            for position, item in enumerate(items)
        ]
        AnalysisRepository(session).add(analysis, results)
        return analysis.id

    # Analysis state machine

    def _transition(self, session: Session, analysis_id: str, target: AnalysisStatus) -> Analysis:
        analysis = AnalysisRepository(session).get(analysis_id, for_update=True)
        if analysis is None:
            raise NotFoundError(f"Analysis {analysis_id} not found")
        if not can_transition_analysis(analysis.status, target):
            raise InvalidTransitionError(
                f"Analysis {analysis_id} cannot move from {analysis.status} to {target.value}",
                current=analysis.status,
                target=target.value,
            )
        analysis.status = target.value
        return analysis

    def mark_running(self, analysis_id: str, run_handle: Optional[str] = None) -> None:
        """
        Move an analysis from pending to running, optionally recording the run
        handle of the orchestration driving it.
        """
        with UnitOfWork(self.session_factory) as uow:
            analysis = self._transition(uow.session, analysis_id, AnalysisStatus.RUNNING)
            if run_handle:
                analysis.run_handle = run_handle

        logger.info(f"Analysis {analysis_id} is running (run handle: {run_handle})")
        structured_logger.analysis_event("analysis_running", analysis_id, run_handle=run_handle)

    def start_analysis(self, analysis_id: str, user_id: str, run_handle: str) -> str:
        """
        Claim a pending analysis for a new run on behalf of its owner.

        Only one caller can win the claim; every later caller gets
        InvalidTransitionError.

        Returns:
            The analysis status after the claim ("running")

        Raises:
            NotFoundError: If the analysis does not exist
            AccessDeniedError: If the analysis belongs to another user
            InvalidTransitionError: If the analysis is no longer pending
        """
        with UnitOfWork(self.session_factory) as uow:
            session = uow.session
            analysis = self._get_owned(session, analysis_id, user_id)
            if not AnalysisRepository(session).claim_pending(analysis_id, run_handle):
                session.refresh(analysis)
                raise InvalidTransitionError(
                    f"Analysis {analysis_id} is already {analysis.status}",
                    current=analysis.status,
                    target=AnalysisStatus.RUNNING.value,
                )

        logger.info(f"Analysis {analysis_id} claimed by run handle {run_handle}")
        structured_logger.analysis_event("analysis_running", analysis_id, run_handle=run_handle)
        return AnalysisStatus.RUNNING.value

    def complete_analysis(self, analysis_id: str) -> None:
        """
        Seal a running analysis as completed, regardless of how many items failed.

        The counters are recomputed from the item results first. An analysis
        whose items have not all settled is still sealed, with a warning.
        """
        with UnitOfWork(self.session_factory) as uow:
            analysis = self._transition(uow.session, analysis_id, AnalysisStatus.COMPLETED)
            completed, failed = ProgressAggregator(uow.session).recompute(analysis_id)
            analysis.completed_at = utc_now()
            total = analysis.total_items

        if completed + failed != total:
            logger.warning(
                f"Analysis {analysis_id} completed with unsettled items: "
                f"{completed} completed + {failed} failed of {total}"
            )
        logger.info(
            f"Analysis {analysis_id} completed: {completed} completed, {failed} failed of {total}"
        )
        structured_logger.analysis_event(
            "analysis_completed",
            analysis_id,
            total_items=total,
            completed_items=completed,
            failed_items=failed,
        )

    def fail_analysis(self, analysis_id: str, message: str) -> None:
        """
        Seal an analysis as failed because its orchestration could not run.

        Item-level failures never go through here.
        """
        message = message or UNKNOWN_ERROR
        with UnitOfWork(self.session_factory) as uow:
            analysis = self._transition(uow.session, analysis_id, AnalysisStatus.FAILED)
            analysis.error_message = message
            analysis.completed_at = utc_now()

        logger.error(f"Analysis {analysis_id} failed: {message}")
        structured_logger.analysis_event("analysis_failed", analysis_id, error=message)

    # Item results

    def update_item_result(
        self,
        analysis_id: str,
        rubric_item_id: str,
        status: str,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> AnalysisItemResult:
        """
        Write the status of one item result and recompute the analysis counters.

        This is the only write path of evaluation workers. Terminal writes set
        completed_at once; afterwards the row can no longer change.

        Args:
            analysis_id: Analysis the item belongs to
            rubric_item_id: Rubric item the result is for
            status: New item status
            result: Validated result, required with status completed
            error: Failure message, used with status failed

        Returns:
            The item result as written

        Raises:
            NotFoundError: If no such item result exists
            ResultImmutableError: If the item result already reached a terminal state
            InvalidTransitionError: If the status change is not allowed
            ValueError: If result/error do not fit the status
        """
        target = ItemStatus(status)
        if target == ItemStatus.COMPLETED and result is None:
            raise ValueError("A completed item result requires a result")
        if target != ItemStatus.COMPLETED and result is not None:
            raise ValueError(f"A result cannot be stored with status {target.value}")
        if target != ItemStatus.FAILED and error is not None:
            raise ValueError(f"An error cannot be stored with status {target.value}")

        with UnitOfWork(self.session_factory) as uow:
            session = uow.session
            repository = AnalysisRepository(session)
            row = repository.get_result(analysis_id, rubric_item_id, for_update=True)
            if row is None:
                raise NotFoundError(
                    f"No result for item {rubric_item_id} in analysis {analysis_id}"
                )

            current = ItemStatus(row.status)
            if current in TERMINAL_ITEM_STATUSES:
                raise ResultImmutableError(
                    f"Result for item {rubric_item_id} is already {current.value}",
                    current=current.value,
                    target=target.value,
                )
            if not can_transition_item(current, target):
                raise InvalidTransitionError(
                    f"Item {rubric_item_id} cannot move from {current.value} to {target.value}",
                    current=current.value,
                    target=target.value,
                )

            row.status = target.value
            if target == ItemStatus.COMPLETED:
                row.result = result
                row.error = None
                row.completed_at = utc_now()
            elif target == ItemStatus.FAILED:
                row.result = None
                row.error = error or UNKNOWN_ERROR
                row.completed_at = utc_now()
            session.flush()

            completed, failed = ProgressAggregator(session).recompute(analysis_id)
            written = self._item_result(row)

        if target in TERMINAL_ITEM_STATUSES:
            structured_logger.analysis_event(
                "item_settled",
                analysis_id,
                rubric_item_id=rubric_item_id,
                status=target.value,
                completed_items=completed,
                failed_items=failed,
            )
        return written

    def get_item_result(self, analysis_id: str, rubric_item_id: str) -> AnalysisItemResult:
        with UnitOfWork(self.session_factory) as uow:
            row = AnalysisRepository(uow.session).get_result(analysis_id, rubric_item_id)
            if row is None:
                raise NotFoundError(
                    f"No result for item {rubric_item_id} in analysis {analysis_id}"
                )
            return self._item_result(row)

    def list_unsettled_items(self, analysis_id: str) -> List[str]:
        """Rubric item ids whose result is still pending or processing."""
        with UnitOfWork(self.session_factory) as uow:
            rows = AnalysisRepository(uow.session).get_results(analysis_id)
            return [
                row.rubric_item_id
                for row in rows
                if ItemStatus(row.status) not in TERMINAL_ITEM_STATUSES
            ]

    # Reads

    def get_analysis_for_task(self, analysis_id: str) -> AnalysisTask:
        """Load the repository identity and item snapshots of an analysis."""
        with UnitOfWork(self.session_factory) as uow:
            repository = AnalysisRepository(uow.session)
            analysis = repository.get(analysis_id)
            if analysis is None:
                raise NotFoundError(f"Analysis {analysis_id} not found")

            return AnalysisTask(
                analysis_id=analysis.id,
                status=analysis.status,
                repository_owner=analysis.repository_owner,
                repository_name=analysis.repository_name,
                branch=analysis.branch,
                items=[
                    ItemSnapshot(
                        rubric_item_id=row.rubric_item_id,
                        item_name=row.item_name,
                        item_description=row.item_description or "",
                        evaluation_type=row.evaluation_type,
                        item_config=dict(row.item_config or {}),
                        status=row.status,
                    )
                    for row in repository.get_results(analysis_id)
                ],
            )

    def get_summary(self, analysis_id: str) -> AnalysisSummary:
        with UnitOfWork(self.session_factory) as uow:
            analysis = AnalysisRepository(uow.session).get(analysis_id)
            if analysis is None:
                raise NotFoundError(f"Analysis {analysis_id} not found")
            return self._summary(analysis)

    def get_analysis(self, analysis_id: str, user_id: str) -> AnalysisDetail:
        """
        Get an analysis with all of its item results.

        Raises:
            NotFoundError: If the analysis does not exist
            AccessDeniedError: If the analysis belongs to another user
        """
        with UnitOfWork(self.session_factory) as uow:
            session = uow.session
            analysis = self._get_owned(session, analysis_id, user_id)
            rows = AnalysisRepository(session).get_results(analysis_id)
            live_items = {
                item.id: item
                for item in RubricStore(session).get_items_by_ids(
                    [row.rubric_item_id for row in rows]
                )
            }

            summary = self._summary(analysis)
            return AnalysisDetail(
                **summary.model_dump(),
                results=[
                    self._item_result(row, live_items.get(row.rubric_item_id)) for row in rows
                ],
            )

    def list_analyses(
        self, user_id: str, filters: Optional[AnalysisFilters] = None
    ) -> List[AnalysisSummary]:
        """
        List the user's analyses, newest first.

        date_from and date_to are both inclusive.
        """
        filters = filters or AnalysisFilters()
        with UnitOfWork(self.session_factory) as uow:
            analyses = AnalysisRepository(uow.session).list_for_user(
                user_id,
                repository_id=filters.repository_id,
                rubric_id=filters.rubric_id,
                status=filters.status,
                date_from=ensure_utc(filters.date_from),
                date_to=ensure_utc(filters.date_to),
                limit=filters.limit,
            )
            return [self._summary(analysis) for analysis in analyses]

    def get_progress(self, analysis_id: str, user_id: str) -> Dict[str, Any]:
        """
        Progress payload of an analysis: the live tracker while it is being
        orchestrated in this process, otherwise derived from persisted state.
        """
        with UnitOfWork(self.session_factory) as uow:
            session = uow.session
            analysis = self._get_owned(session, analysis_id, user_id)
            tracker = progress_registry.get(analysis_id)
            if tracker is not None:
                return tracker.snapshot()
            return progress_from_state(analysis, AnalysisRepository(session).get_results(analysis_id))

    def _get_owned(self, session: Session, analysis_id: str, user_id: str) -> Analysis:
        analysis = AnalysisRepository(session).get(analysis_id)
        if analysis is None:
            raise NotFoundError(f"Analysis {analysis_id} not found")
        if analysis.user_id != user_id:
            raise AccessDeniedError(f"Analysis {analysis_id} is not accessible")
        return analysis

    def _summary(self, analysis: Analysis) -> AnalysisSummary:
        return AnalysisSummary(
            id=analysis.id,
            user_id=analysis.user_id,
            repository_id=analysis.repository_id,
            repository_url=analysis.repository_url,
            repository_owner=analysis.repository_owner,
            repository_name=analysis.repository_name,
            branch=analysis.branch,
            rubric_id=analysis.rubric_id,
            rubric_name=analysis.rubric.name if analysis.rubric is not None else None,
            run_handle=analysis.run_handle,
            status=analysis.status,
            total_items=analysis.total_items,
            completed_items=analysis.completed_items,
            failed_items=analysis.failed_items,
            error_message=analysis.error_message,
            created_at=ensure_utc(analysis.created_at),
            completed_at=ensure_utc(analysis.completed_at),
        )

    def _item_result(
        self, row: AnalysisResult, live_item: Optional[RubricItem] = None
    ) -> AnalysisItemResult:
        rubric_item = None
        if live_item is not None:
            rubric_item = RubricItemRef(
                id=live_item.id,
                name=live_item.name,
                description=live_item.description or "",
                evaluation_type=live_item.evaluation_type,
            )
        return AnalysisItemResult(
            rubric_item_id=row.rubric_item_id,
            item_name=row.item_name,
            item_description=row.item_description or "",
            evaluation_type=row.evaluation_type,
            item_config=dict(row.item_config or {}),
            status=row.status,
            result=row.result,
            error=row.error,
            completed_at=ensure_utc(row.completed_at),
            rubric_item=rubric_item,
        )

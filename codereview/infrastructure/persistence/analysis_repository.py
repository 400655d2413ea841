"""
Analysis repository implementation.

This module provides row-level access to analyses and their item results
using SQLAlchemy. Business rules (ownership, status transitions) live in
AnalysisService; this class only reads and writes rows.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from codereview.models import Analysis, AnalysisResult

logger = logging.getLogger(__name__)


class AnalysisRepository:
    """
    Data access for the analyses and analysis_results tables.
    """

    def __init__(self, session: Session):
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def add(self, analysis: Analysis, results: List[AnalysisResult]) -> Analysis:
        """
        Stage an analysis and its placeholder item results in the current
        transaction.

        Args:
            analysis: New analysis row
            results: One pending AnalysisResult per rubric item

        Returns:
            The analysis with its generated id populated
        """
        try:
            self.session.add(analysis)
            for result in results:
                result.analysis = analysis
                self.session.add(result)
            self.session.flush()
            return analysis
        except SQLAlchemyError as e:
            logger.error(f"Error creating analysis record: {str(e)}")
            raise

    def get(self, analysis_id: str, for_update: bool = False) -> Optional[Analysis]:
        query = self.session.query(Analysis).filter(Analysis.id == analysis_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def claim_pending(self, analysis_id: str, run_handle: str) -> bool:
        """
        Move a pending analysis to running in a single conditional UPDATE.

        Returns:
            True if this call made the transition, False if the analysis was
            no longer pending (or does not exist)
        """
        try:
            claimed = (
                self.session.query(Analysis)
                .filter(Analysis.id == analysis_id, Analysis.status == "pending")
                .update({"status": "running", "run_handle": run_handle}, synchronize_session=False)
            )
            self.session.flush()
            return claimed == 1
        except SQLAlchemyError as e:
            logger.error(f"Error claiming analysis {analysis_id}: {str(e)}")
            raise

    def list_for_user(
        self,
        user_id: str,
        repository_id: Optional[str] = None,
        rubric_id: Optional[str] = None,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Analysis]:
        """
        List a user's analyses, newest first.

        Date bounds are inclusive on both ends.
        """
        try:
            query = self.session.query(Analysis).filter(Analysis.user_id == user_id)

            if repository_id:
                query = query.filter(Analysis.repository_id == repository_id)
            if rubric_id:
                query = query.filter(Analysis.rubric_id == rubric_id)
            if status:
                query = query.filter(Analysis.status == status)
            if date_from is not None:
                query = query.filter(Analysis.created_at >= date_from)
            if date_to is not None:
                query = query.filter(Analysis.created_at <= date_to)

            query = query.order_by(Analysis.created_at.desc(), Analysis.id.desc())
            if limit:
                query = query.limit(limit)

            return query.all()
        except SQLAlchemyError as e:
            logger.error(f"Error listing analyses for user {user_id}: {str(e)}")
            raise

    def get_results(self, analysis_id: str) -> List[AnalysisResult]:
        return (
            self.session.query(AnalysisResult)
            .filter(AnalysisResult.analysis_id == analysis_id)
            .order_by(AnalysisResult.position.asc())
            .all()
        )

    def get_result(
        self, analysis_id: str, rubric_item_id: str, for_update: bool = False
    ) -> Optional[AnalysisResult]:
        query = self.session.query(AnalysisResult).filter(
            AnalysisResult.analysis_id == analysis_id,
            AnalysisResult.rubric_item_id == rubric_item_id,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def count_item_statuses(self, analysis_id: str) -> Dict[str, int]:
        """
        Count the analysis's item results per status.

        Returns:
            Mapping of status -> count; statuses with no rows are absent
        """
        rows = (
            self.session.query(AnalysisResult.status, func.count(AnalysisResult.id))
            .filter(AnalysisResult.analysis_id == analysis_id)
            .group_by(AnalysisResult.status)
            .all()
        )
        return {status: count for status, count in rows}

    def set_counters(self, analysis_id: str, completed_items: int, failed_items: int) -> bool:
        """
        Overwrite the analysis's derived counters with absolute values.

        Returns:
            True if the analysis exists, False otherwise
        """
        try:
            analysis = self.get(analysis_id)
            if not analysis:
                return False

            analysis.completed_items = completed_items
            analysis.failed_items = failed_items
            self.session.flush()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error updating counters for analysis {analysis_id}: {str(e)}")
            raise

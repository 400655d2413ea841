"""
Read access to rubrics and connected repositories.

Rubric and repository management live elsewhere; the analysis pipeline only
needs to resolve them when an analysis is created.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from codereview.models import Repository, Rubric, RubricItem


class RubricStore:
    def __init__(self, session: Session):
        self.session = session

    def get_rubric(self, rubric_id: str) -> Optional[Rubric]:
        """Return the rubric unless it does not exist or was soft-deleted."""
        return (
            self.session.query(Rubric)
            .filter(Rubric.id == rubric_id, Rubric.deleted_at.is_(None))
            .first()
        )

    def get_rubric_items(self, rubric_id: str) -> List[RubricItem]:
        return (
            self.session.query(RubricItem)
            .filter(RubricItem.rubric_id == rubric_id)
            .order_by(RubricItem.order.asc(), RubricItem.id.asc())
            .all()
        )

    def get_items_by_ids(self, item_ids: List[str]) -> List[RubricItem]:
        if not item_ids:
            return []
        return self.session.query(RubricItem).filter(RubricItem.id.in_(item_ids)).all()


class RepositoryStore:
    def __init__(self, session: Session):
        self.session = session

    def get_repository(self, repository_id: str) -> Optional[Repository]:
        return self.session.query(Repository).filter(Repository.id == repository_id).first()

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from codereview.database import Base
from codereview.utils.timezone_utils import utc_now


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True)  # From the identity provider
    email = Column(String, nullable=True)
    name = Column(String, nullable=True)


class Repository(Base):
    """A GitHub repository connected by a user."""

    __tablename__ = "repositories"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    owner = Column(String, nullable=False)
    name = Column(String, nullable=False)
    full_name = Column(String, nullable=False)
    default_branch = Column(String, nullable=False, default="main")
    connected_at = Column(DateTime(timezone=True), default=utc_now)


class Rubric(Base):
    __tablename__ = "rubrics"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.user_id"), nullable=True)  # null for system templates
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_system_template = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "RubricItem", order_by="RubricItem.order", viewonly=True
    )


class RubricItem(Base):
    __tablename__ = "rubric_items"

    id = Column(String, primary_key=True, default=_new_id)
    rubric_id = Column(String, ForeignKey("rubrics.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    evaluation_type = Column(String, nullable=False)  # yes_no, range, comments, code_examples, options
    config = Column(JSON, nullable=False, default=dict)
    order = Column(Integer, nullable=False, default=0)


class Analysis(Base):
    """One run of a rubric against one repository snapshot."""

    __tablename__ = "analyses"

    id = Column(String, primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)

    # Connected repository, or null for one-off analyses by URL
    repository_id = Column(String, ForeignKey("repositories.id"), nullable=True, index=True)
    repository_url = Column(String, nullable=True)
    repository_owner = Column(String, nullable=False)
    repository_name = Column(String, nullable=False)
    branch = Column(String, nullable=False)

    rubric_id = Column(String, ForeignKey("rubrics.id"), nullable=False, index=True)
    run_handle = Column(String, nullable=True, index=True)

    status = Column(String, nullable=False, default="pending")  # pending, running, completed, failed
    total_items = Column(Integer, nullable=False, default=0)
    completed_items = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    results = relationship(
        "AnalysisResult",
        back_populates="analysis",
        cascade="all, delete-orphan",
    )
    repository = relationship("Repository", viewonly=True)
    rubric = relationship("Rubric", viewonly=True)


class AnalysisResult(Base):
    """Outcome of evaluating one rubric item within one analysis."""

    __tablename__ = "analysis_results"
    __table_args__ = (
        UniqueConstraint("analysis_id", "rubric_item_id", name="uq_analysis_item"),
    )

    id = Column(String, primary_key=True, default=_new_id)
    analysis_id = Column(String, ForeignKey("analyses.id"), nullable=False, index=True)
    rubric_item_id = Column(String, nullable=False)

    # By-value copy of the rubric item taken when the analysis was created
    item_name = Column(String, nullable=False)
    item_description = Column(Text, nullable=False, default="")
    evaluation_type = Column(String, nullable=False)
    item_config = Column(JSON, nullable=False, default=dict)
    position = Column(Integer, nullable=False, default=0)

    status = Column(String, nullable=False, default="pending")  # pending, processing, completed, failed
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    analysis = relationship("Analysis", back_populates="results")

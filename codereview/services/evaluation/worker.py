"""
Evaluation worker: evaluates one rubric item against a repository snapshot.

A worker run writes its item as processing, asks the evaluator for a
structured answer, validates it and writes the item as completed. Attempts
are retried under the configured policy; only once every attempt has failed
is the item written as failed, so a failed item is never visible while a
retry is still pending.
"""

import logging
from dataclasses import replace
from typing import Callable, Optional

from codereview.domain.analysis_state import ItemStatus
from codereview.domain.exceptions import ItemEvaluationError, ResultImmutableError
from codereview.schemas import AnalysisItemResult, RubricItemPayload
from codereview.services.analysis_service import AnalysisService
from codereview.services.evaluation import result_codec
from codereview.services.llm.evaluator import StructuredEvaluator
from codereview.services.llm.retry import RetryConfig, evaluation_retry_config, retry_async

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, str], None]


def _error_message(error: BaseException) -> str:
    message = str(error)
    if not message:
        return f"{error.__class__.__name__} during evaluation"
    return message


class EvaluationWorker:
    """Runs single rubric item evaluations; one instance serves a whole analysis."""

    def __init__(
        self,
        analysis_service: AnalysisService,
        evaluator: StructuredEvaluator,
        retry_config: Optional[RetryConfig] = None,
        on_status: Optional[StatusCallback] = None,
    ):
        self.analysis_service = analysis_service
        self.evaluator = evaluator
        config = retry_config or evaluation_retry_config()
        # A sealed item is never retried; a redelivered run just reports it
        self.retry_config = replace(
            config,
            non_retryable_exceptions=config.non_retryable_exceptions + (ResultImmutableError,),
        )
        self.on_status = on_status

    def _notify(self, rubric_item_id: str, status: str) -> None:
        if self.on_status is not None:
            self.on_status(rubric_item_id, status)

    async def run(self, payload: RubricItemPayload) -> AnalysisItemResult:
        """
        Evaluate one rubric item with retries.

        Returns:
            The item result as persisted

        Raises:
            ItemEvaluationError: If every attempt failed; the item has been
                written as failed before this is raised
        """
        item_id = payload.rubric_item_id
        try:
            return await retry_async(self._attempt, payload, config=self.retry_config)
        except ResultImmutableError:
            stored = self.analysis_service.get_item_result(payload.analysis_id, item_id)
            logger.info(
                f"[EvaluationWorker] Item {item_id} of analysis {payload.analysis_id} "
                f"already {stored.status}, skipping"
            )
            self._notify(item_id, stored.status)
            return stored
        except Exception as e:
            message = _error_message(e)
            logger.error(
                f"[EvaluationWorker] Item {item_id} of analysis {payload.analysis_id} "
                f"failed after retries: {message}"
            )
            try:
                self.analysis_service.update_item_result(
                    payload.analysis_id, item_id, ItemStatus.FAILED.value, error=message
                )
            except ResultImmutableError:
                logger.warning(f"[EvaluationWorker] Item {item_id} settled concurrently")
            self._notify(item_id, ItemStatus.FAILED.value)
            raise ItemEvaluationError(item_id, message) from e

    async def _attempt(self, payload: RubricItemPayload) -> AnalysisItemResult:
        """One attempt: processing write, evaluation, validation, completed write."""
        item_id = payload.rubric_item_id
        self.analysis_service.update_item_result(
            payload.analysis_id, item_id, ItemStatus.PROCESSING.value
        )
        self._notify(item_id, ItemStatus.PROCESSING.value)

        prompt = result_codec.build_prompt(payload)
        output_type = result_codec.output_model_for(payload.evaluation_type)
        logger.debug(
            f"[EvaluationWorker] Evaluating {item_id} ({payload.evaluation_type}), "
            f"prompt length {len(prompt)}"
        )
        response = await self.evaluator.evaluate(prompt, output_type)

        result = result_codec.validate_result(payload.evaluation_type, payload.config, response)
        written = self.analysis_service.update_item_result(
            payload.analysis_id, item_id, ItemStatus.COMPLETED.value, result=result
        )
        self._notify(item_id, ItemStatus.COMPLETED.value)
        logger.info(f"[EvaluationWorker] Item {item_id} of analysis {payload.analysis_id} completed")
        return written

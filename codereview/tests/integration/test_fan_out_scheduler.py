import asyncio

import pytest

from codereview.domain.exceptions import RepositoryFetchError
from codereview.schemas import RubricItemPayload
from codereview.services.evaluation.progress import ProgressRegistry, ProgressTracker
from codereview.services.evaluation.scheduler import UNSETTLED_ERROR, FanOutScheduler
from codereview.services.evaluation.worker import EvaluationWorker
from codereview.services.llm.exceptions import LLMAPIError
from codereview.services.llm.retry import RetryConfig


class RecordingRegistry(ProgressRegistry):
    """Registry that subscribes to every tracker it hands out."""

    def __init__(self):
        super().__init__()
        self.payloads = []

    def track(self, analysis_id, item_ids=()):
        tracker = super().track(analysis_id, item_ids)
        tracker.subscribe(self.payloads.append)
        return tracker


@pytest.fixture
def fetch_retry():
    return RetryConfig(max_attempts=2, base_delay=0, max_delay=0, jitter=False)


@pytest.fixture
def analysis_id(analysis_service, seed):
    return analysis_service.create_analysis(seed.user_id, seed.repository_id, seed.rubric_id)


@pytest.fixture
def make_scheduler(analysis_service, fake_fetcher_cls, snapshot, no_delay_retry, fetch_retry):
    def _make(evaluator, fetcher=None, **kwargs):
        return FanOutScheduler(
            analysis_service,
            fetcher=fetcher or fake_fetcher_cls(snapshot),
            evaluator=evaluator,
            retry_config=no_delay_retry,
            fetch_retry=fetch_retry,
            **kwargs,
        )

    return _make


@pytest.mark.asyncio
async def test_all_items_complete(analysis_service, seed, analysis_id, make_scheduler, fake_evaluator_cls, fake_fetcher_cls, snapshot, good_responses):
    evaluator = fake_evaluator_cls(good_responses)
    fetcher = fake_fetcher_cls(snapshot)

    summary = await make_scheduler(evaluator, fetcher=fetcher).run(analysis_id, run_handle="run_1")

    assert summary.status == "completed"
    assert (summary.total_items, summary.completed_items, summary.failed_items) == (5, 5, 0)
    assert summary.run_handle == "run_1"
    assert fetcher.calls == [("acme", "widgets", "develop")]
    assert sorted(evaluator.calls) == sorted(good_responses)

    detail = analysis_service.get_analysis(analysis_id, seed.user_id)
    by_name = {r.item_name: r for r in detail.results}
    assert by_name["Web framework"].result == {"selections": ["FastAPI"]}
    assert by_name["Code quality"].result["max"] == 10
    assert all(r.completed_at is not None for r in detail.results)


@pytest.mark.asyncio
async def test_item_failures_stay_isolated(analysis_service, seed, analysis_id, make_scheduler, fake_evaluator_cls, good_responses):
    responses = dict(good_responses)
    responses["Error handling examples"] = LLMAPIError("Evaluator call failed: timeout")
    responses["Web framework"] = {"selections": ["Rails"]}
    evaluator = fake_evaluator_cls(responses)

    summary = await make_scheduler(evaluator).run(analysis_id)

    assert summary.status == "completed"
    assert (summary.completed_items, summary.failed_items) == (3, 2)
    assert summary.error_message is None
    assert evaluator.calls.count("Error handling examples") == 2
    assert evaluator.calls.count("Web framework") == 2

    detail = analysis_service.get_analysis(analysis_id, seed.user_id)
    by_name = {r.item_name: r for r in detail.results}
    assert by_name["Error handling examples"].status == "failed"
    assert by_name["Error handling examples"].error == "Evaluator call failed: timeout"
    assert "Rails" in by_name["Web framework"].error
    assert by_name["Has tests"].status == "completed"


@pytest.mark.asyncio
async def test_transient_error_is_retried(analysis_service, seed, analysis_id, make_scheduler, fake_evaluator_cls, good_responses):
    responses = dict(good_responses)
    responses["Has tests"] = [LLMAPIError("rate limited"), good_responses["Has tests"]]
    evaluator = fake_evaluator_cls(responses)

    summary = await make_scheduler(evaluator).run(analysis_id)

    assert summary.completed_items == 5
    assert evaluator.calls.count("Has tests") == 2


@pytest.mark.asyncio
async def test_fetch_failure_fails_analysis(analysis_service, seed, analysis_id, make_scheduler, fake_evaluator_cls, fake_fetcher_cls, good_responses):
    evaluator = fake_evaluator_cls(good_responses)
    fetcher = fake_fetcher_cls(error=RepositoryFetchError("Repository acme/widgets or branch 'develop' not found"))

    summary = await make_scheduler(evaluator, fetcher=fetcher).run(analysis_id)

    assert summary.status == "failed"
    assert summary.error_message == "Repository acme/widgets or branch 'develop' not found"
    assert len(fetcher.calls) == 2
    assert evaluator.calls == []
    detail = analysis_service.get_analysis(analysis_id, seed.user_id)
    assert detail.completed_at is not None
    assert all(r.status == "pending" for r in detail.results)


@pytest.mark.asyncio
async def test_duplicate_delivery_is_a_no_op(analysis_id, make_scheduler, fake_evaluator_cls, good_responses):
    evaluator = fake_evaluator_cls(good_responses)
    scheduler = make_scheduler(evaluator)

    first = await scheduler.run(analysis_id, run_handle="run_1")
    second = await scheduler.run(analysis_id, run_handle="run_2")

    assert first.status == second.status == "completed"
    assert second.completed_items == 5
    assert second.run_handle == "run_1"
    assert len(evaluator.calls) == 5


@pytest.mark.asyncio
async def test_redelivered_run_skips_settled_items(analysis_service, seed, analysis_id, make_scheduler, fake_evaluator_cls, good_responses):
    analysis_service.mark_running(analysis_id, run_handle="run_1")
    analysis_service.update_item_result(
        analysis_id, seed.item_ids[0], "completed", result=good_responses["Has tests"]
    )
    evaluator = fake_evaluator_cls(good_responses)

    summary = await make_scheduler(evaluator).run(analysis_id, run_handle="run_1")

    assert summary.status == "completed"
    assert summary.completed_items == 5
    assert "Has tests" not in evaluator.calls


@pytest.mark.asyncio
async def test_rubric_without_items_completes_without_fetching(analysis_service, seed, make_rubric, make_scheduler, fake_evaluator_cls, fake_fetcher_cls):
    rubric = make_rubric(items=[], name="Empty")
    analysis_id = analysis_service.create_analysis(seed.user_id, seed.repository_id, rubric.id)
    fetcher = fake_fetcher_cls()

    summary = await make_scheduler(fake_evaluator_cls({}), fetcher=fetcher).run(analysis_id)

    assert (summary.status, summary.total_items) == ("completed", 0)
    assert fetcher.calls == []


@pytest.mark.asyncio
async def test_invalid_item_configuration_fails_only_that_item(analysis_service, seed, make_rubric, make_scheduler, fake_evaluator_cls, good_responses):
    rubric = make_rubric(
        items=[
            {"name": "Has tests", "evaluation_type": "yes_no", "config": {}},
            {"name": "Web framework", "evaluation_type": "options", "config": {"options": "FastAPI"}},
        ],
        name="Broken",
    )
    analysis_id = analysis_service.create_analysis(seed.user_id, seed.repository_id, rubric.id)

    summary = await make_scheduler(fake_evaluator_cls(good_responses)).run(analysis_id)

    assert (summary.status, summary.completed_items, summary.failed_items) == ("completed", 1, 1)
    failed = analysis_service.get_item_result(analysis_id, rubric.item_ids[1])
    assert failed.error.startswith("Invalid rubric item configuration")


@pytest.mark.asyncio
async def test_concurrency_is_bounded(analysis_id, make_scheduler, fake_evaluator_cls, good_responses):
    class SlowEvaluator:
        def __init__(self):
            self.inner = fake_evaluator_cls(good_responses)
            self.active = 0
            self.peak = 0

        async def evaluate(self, prompt, output_type):
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                await asyncio.sleep(0.01)
                return await self.inner.evaluate(prompt, output_type)
            finally:
                self.active -= 1

    evaluator = SlowEvaluator()

    summary = await make_scheduler(evaluator, max_concurrency=2).run(analysis_id)

    assert summary.completed_items == 5
    assert evaluator.peak == 2


@pytest.mark.asyncio
async def test_progress_is_published_and_discarded(analysis_id, make_scheduler, fake_evaluator_cls, good_responses):
    registry = RecordingRegistry()

    await make_scheduler(fake_evaluator_cls(good_responses), registry=registry).run(analysis_id)

    phases = [payload["status"] for payload in registry.payloads]
    assert phases.index("fetching_repo") < phases.index("evaluating") < phases.index("completing")
    assert registry.payloads[-1]["completedItems"] == 5
    assert any("currentItem" in payload for payload in registry.payloads)
    assert registry.get(analysis_id) is None


def test_sweep_fails_unsettled_items(analysis_service, seed, analysis_id, make_scheduler, fake_evaluator_cls):
    analysis_service.mark_running(analysis_id)
    analysis_service.update_item_result(analysis_id, seed.item_ids[0], "processing")
    analysis_service.update_item_result(analysis_id, seed.item_ids[1], "failed", error="boom")
    tracker = ProgressTracker(analysis_id, seed.item_ids)

    make_scheduler(fake_evaluator_cls({}))._sweep_unsettled(analysis_id, tracker)

    results = analysis_service.get_analysis(analysis_id, seed.user_id).results
    assert results[1].error == "boom"
    assert [r.error for r in results if r.rubric_item_id != seed.item_ids[1]] == [UNSETTLED_ERROR] * 4
    assert tracker.snapshot()["failedItems"] == 4


@pytest.mark.asyncio
async def test_worker_returns_stored_result_for_settled_item(analysis_service, seed, analysis_id, fake_evaluator_cls, snapshot, no_delay_retry, good_responses):
    analysis_service.update_item_result(
        analysis_id, seed.item_ids[0], "completed", result=good_responses["Has tests"]
    )
    evaluator = fake_evaluator_cls(good_responses)
    worker = EvaluationWorker(analysis_service, evaluator, retry_config=no_delay_retry)
    payload = RubricItemPayload(
        analysis_id=analysis_id,
        rubric_item_id=seed.item_ids[0],
        item_name="Has tests",
        evaluation_type="yes_no",
        repository=snapshot,
    )

    stored = await worker.run(payload)

    assert stored.status == "completed"
    assert stored.result == good_responses["Has tests"]
    assert evaluator.calls == []
    assert no_delay_retry.non_retryable_exceptions == ()

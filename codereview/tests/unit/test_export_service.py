import json
from datetime import datetime, timezone

from codereview.schemas import AnalysisDetail, AnalysisItemResult
from codereview.services.export_service import export_as_json, export_as_markdown

CREATED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
FINISHED = datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)


def _item(item_id, name, kind, status="completed", result=None, error=None):
    return AnalysisItemResult(
        rubric_item_id=item_id,
        item_name=name,
        item_description=f"{name} description",
        evaluation_type=kind,
        status=status,
        result=result,
        error=error,
        completed_at=FINISHED if status in ("completed", "failed") else None,
    )


def _detail():
    return AnalysisDetail(
        id="an1",
        user_id="u1",
        repository_id="r1",
        repository_url="https://github.com/acme/widgets",
        repository_owner="acme",
        repository_name="widgets",
        branch="main",
        rubric_id="rb1",
        rubric_name="Backend review",
        status="completed",
        total_items=6,
        completed_items=5,
        failed_items=1,
        created_at=CREATED,
        completed_at=FINISHED,
        results=[
            _item("i1", "Has tests", "yes_no", result={"value": True, "justification": "pytest"}),
            _item("i2", "Code quality", "range", result={"value": 7, "min": 0, "max": 10, "rationale": "tidy"}),
            _item("i3", "General feedback", "comments", result={"feedback": "Add type hints."}),
            _item(
                "i4",
                "Error handling examples",
                "code_examples",
                result={
                    "examples": [
                        {
                            "filePath": "app/main.py",
                            "lineStart": 3,
                            "lineEnd": 5,
                            "code": "try:\n    run()",
                            "explanation": "Wraps startup",
                        }
                    ]
                },
            ),
            _item("i5", "Web framework", "options", result={"selections": ["FastAPI"]}),
            _item("i6", "Docs", "comments", status="failed", error="Evaluator call failed: timeout"),
        ],
    )


def test_json_export_shape():
    data = json.loads(export_as_json(_detail()))

    assert data["repository"] == "acme/widgets"
    assert data["rubric"] == "Backend review"
    assert data["summary"] == {"totalItems": 6, "completedItems": 5, "failedItems": 1}
    assert data["createdAt"] == "2026-03-01T12:00:00Z"
    assert [r["itemId"] for r in data["results"]] == ["i1", "i2", "i3", "i4", "i5", "i6"]
    assert data["results"][5]["error"] == "Evaluator call failed: timeout"
    assert data["results"][5]["result"] is None


def test_markdown_export_renders_each_kind():
    markdown = export_as_markdown(_detail())

    assert markdown.startswith("# Analysis Results")
    assert "**Repository:** acme/widgets (main)" in markdown
    assert "**Completed:** 5/6 items" in markdown
    assert "**Failed:** 1 items" in markdown
    assert "**Result:** ✅ Yes" in markdown
    assert "**Score:** 7 / 10 (min: 0)" in markdown
    assert "Add type hints." in markdown
    assert (
        "#### [app/main.py (L3-5)](https://github.com/acme/widgets/blob/main/app/main.py#L3-L5)"
        in markdown
    )
    assert "- FastAPI" in markdown
    assert "**Status:** ❌ Failed" in markdown
    assert "**Error:** Evaluator call failed: timeout" in markdown


def test_markdown_export_of_pending_item():
    detail = _detail()
    detail.results = [_item("i1", "Has tests", "yes_no", status="pending")]

    markdown = export_as_markdown(detail)

    assert "### Has tests" in markdown
    assert "**Status:** pending" in markdown

"""
Export of analysis results as JSON or Markdown.

Exports describe each item by the name and description captured when the
analysis was created, so they stay stable after the rubric is edited.
"""

import json
import logging
from typing import Any, Dict, List

from codereview.schemas import AnalysisDetail, AnalysisItemResult
from codereview.utils.github_url import build_file_url
from codereview.utils.timezone_utils import format_iso_utc

logger = logging.getLogger(__name__)


def _repository_label(detail: AnalysisDetail) -> str:
    return f"{detail.repository_owner}/{detail.repository_name}"


def export_as_json(detail: AnalysisDetail) -> str:
    """Render an analysis and its item results as an indented JSON document."""
    data = {
        "id": detail.id,
        "status": detail.status,
        "repository": _repository_label(detail),
        "repositoryUrl": detail.repository_url,
        "branch": detail.branch,
        "rubric": detail.rubric_name or "Unknown",
        "summary": {
            "totalItems": detail.total_items,
            "completedItems": detail.completed_items,
            "failedItems": detail.failed_items,
        },
        "errorMessage": detail.error_message,
        "createdAt": format_iso_utc(detail.created_at),
        "completedAt": format_iso_utc(detail.completed_at),
        "results": [
            {
                "itemId": item.rubric_item_id,
                "itemName": item.item_name,
                "itemDescription": item.item_description,
                "evaluationType": item.evaluation_type,
                "status": item.status,
                "result": item.result,
                "error": item.error,
                "completedAt": format_iso_utc(item.completed_at),
            }
            for item in detail.results
        ],
    }
    return json.dumps(data, indent=2)


def _yes_no_lines(result: Dict[str, Any]) -> List[str]:
    lines = [f"**Result:** {'✅ Yes' if result.get('value') else '❌ No'}", ""]
    if result.get("justification"):
        lines += ["**Justification:**", "", result["justification"]]
    return lines


def _range_lines(result: Dict[str, Any]) -> List[str]:
    lines = [f"**Score:** {result.get('value'):g} / {result.get('max'):g} (min: {result.get('min'):g})", ""]
    if result.get("rationale"):
        lines += ["**Rationale:**", "", result["rationale"]]
    return lines


def _comments_lines(result: Dict[str, Any]) -> List[str]:
    return ["**Feedback:**", "", result.get("feedback", "")]


def _code_examples_lines(result: Dict[str, Any], detail: AnalysisDetail) -> List[str]:
    examples = result.get("examples", [])
    lines = [f"**Examples:** {len(examples)} found", ""]
    for example in examples:
        url = build_file_url(
            detail.repository_owner,
            detail.repository_name,
            detail.branch,
            example["filePath"],
            example.get("lineStart"),
            example.get("lineEnd"),
        )
        lines += [
            f"#### [{example['filePath']} (L{example['lineStart']}-{example['lineEnd']})]({url})",
            "",
            "```",
            example.get("code", ""),
            "```",
            "",
        ]
        if example.get("explanation"):
            lines += [example["explanation"], ""]
    return lines


def _options_lines(result: Dict[str, Any]) -> List[str]:
    lines = ["**Selected:**", ""]
    lines += [f"- {selection}" for selection in result.get("selections", [])]
    return lines


def _item_lines(item: AnalysisItemResult, detail: AnalysisDetail) -> List[str]:
    lines = [f"### {item.item_name}", ""]
    if item.item_description:
        lines += [f"*{item.item_description}*", ""]

    if item.status == "failed":
        lines.append("**Status:** ❌ Failed")
        if item.error:
            lines.append(f"**Error:** {item.error}")
        return lines + [""]

    if item.status != "completed" or item.result is None:
        return lines + [f"**Status:** {item.status}", ""]

    result = item.result
    if item.evaluation_type == "yes_no":
        lines += _yes_no_lines(result)
    elif item.evaluation_type == "range":
        lines += _range_lines(result)
    elif item.evaluation_type == "comments":
        lines += _comments_lines(result)
    elif item.evaluation_type == "code_examples":
        lines += _code_examples_lines(result, detail)
    elif item.evaluation_type == "options":
        lines += _options_lines(result)
    else:
        logger.warning(f"Exporting result of unknown evaluation type {item.evaluation_type}")
        lines += ["```json", json.dumps(result, indent=2), "```"]
    return lines + ["", "---", ""]


def export_as_markdown(detail: AnalysisDetail) -> str:
    """Render an analysis as a Markdown report, one section per rubric item."""
    lines = [
        "# Analysis Results",
        "",
        f"**Repository:** {_repository_label(detail)} ({detail.branch})",
        f"**Rubric:** {detail.rubric_name or 'Unknown'}",
        f"**Status:** {detail.status}",
        f"**Completed:** {detail.completed_items}/{detail.total_items} items",
    ]
    if detail.failed_items > 0:
        lines.append(f"**Failed:** {detail.failed_items} items")
    if detail.error_message:
        lines.append(f"**Error:** {detail.error_message}")
    lines.append(f"**Created:** {format_iso_utc(detail.created_at)}")
    if detail.completed_at:
        lines.append(f"**Finished:** {format_iso_utc(detail.completed_at)}")
    lines += ["", "---", "", "## Results", ""]

    for item in detail.results:
        lines += _item_lines(item, detail)

    return "\n".join(lines)

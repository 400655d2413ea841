"""
Prompt construction and result validation for rubric item evaluations.

Pure functions only: nothing here performs I/O or retries. A response that
does not satisfy the rules of its evaluation kind raises
ResultValidationError and is never silently coerced into a passing result.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from codereview.domain.analysis_state import EvaluationKind
from codereview.infrastructure.constants.evaluation_constants import (
    DEFAULT_RANGE_MAX,
    DEFAULT_RANGE_MIN,
)
from codereview.schemas import (
    CodeExamplesResult,
    CommentsResult,
    OptionsResult,
    RangeResult,
    RepositorySnapshot,
    RubricItemConfig,
    RubricItemPayload,
    YesNoResult,
)
from codereview.services.llm.exceptions import ResultValidationError

logger = logging.getLogger(__name__)

OUTPUT_MODELS: Dict[EvaluationKind, Type[BaseModel]] = {
    EvaluationKind.YES_NO: YesNoResult,
    EvaluationKind.RANGE: RangeResult,
    EvaluationKind.COMMENTS: CommentsResult,
    EvaluationKind.CODE_EXAMPLES: CodeExamplesResult,
    EvaluationKind.OPTIONS: OptionsResult,
}


def _kind(kind: Union[str, EvaluationKind]) -> EvaluationKind:
    try:
        return EvaluationKind(kind)
    except ValueError:
        raise ResultValidationError(f"Unknown evaluation type: {kind}", evaluation_type=str(kind))


def _config(config: Union[None, Mapping[str, Any], RubricItemConfig]) -> RubricItemConfig:
    if config is None:
        return RubricItemConfig()
    if isinstance(config, RubricItemConfig):
        return config
    return RubricItemConfig.model_validate(dict(config))


def output_model_for(kind: Union[str, EvaluationKind]) -> Type[BaseModel]:
    """Return the pydantic model the evaluator must produce for this kind."""
    return OUTPUT_MODELS[_kind(kind)]


def range_bounds(config: Union[None, Mapping[str, Any], RubricItemConfig]) -> tuple:
    cfg = _config(config)
    low = cfg.minValue if cfg.minValue is not None else DEFAULT_RANGE_MIN
    high = cfg.maxValue if cfg.maxValue is not None else DEFAULT_RANGE_MAX
    return low, high


# Prompt construction


def _format_files(snapshot: RepositorySnapshot) -> str:
    if not snapshot.files:
        return "(no files)"
    return "\n\n".join(f"--- {f.path} ---\n{f.content}" for f in snapshot.files)


def _base_prompt(payload: RubricItemPayload) -> str:
    snapshot = payload.repository
    return (
        "You are a code reviewer evaluating a repository against specific criteria.\n\n"
        f"Repository Structure:\n{snapshot.structure or '(not available)'}\n\n"
        f"Files:\n{_format_files(snapshot)}\n\n"
        "Evaluation Criteria:\n"
        f"Name: {payload.item_name}\n"
        f"Description: {payload.item_description}"
    )


def _yes_no_instructions(config: RubricItemConfig) -> str:
    text = (
        "Evaluate whether this repository meets the criteria.\n"
        '- "value": true if the criteria is met, false otherwise\n'
        '- "justification": explanation of your evaluation'
    )
    if config.requireJustification:
        text += "\nA justification is required and must not be empty."
    return text


def _range_instructions(config: RubricItemConfig) -> str:
    low, high = range_bounds(config)
    text = (
        f"Evaluate this repository on a scale from {low:g} to {high:g}.\n"
        f'- "value": score between {low:g} and {high:g} (inclusive)\n'
        f'- "min": {low:g}\n'
        f'- "max": {high:g}\n'
        '- "rationale": explanation of your score'
    )
    if config.rangeGuidance:
        text += f"\n\nScoring guidance:\n{config.rangeGuidance}"
    return text


def _comments_instructions(config: RubricItemConfig) -> str:
    return (
        "Provide detailed feedback about this repository.\n"
        '- "feedback": detailed comments and suggestions'
    )


def _code_examples_instructions(config: RubricItemConfig) -> str:
    text = (
        "Identify specific code examples that relate to the evaluation criteria.\n"
        '- "examples": list of objects, each with "filePath", "lineStart", "lineEnd", '
        '"code" (the relevant snippet) and "explanation" (why this code is relevant)'
    )
    if config.maxExamples:
        text += f"\nReturn at most {config.maxExamples} examples."
    return text


def _options_instructions(config: RubricItemConfig) -> str:
    options = config.options or []
    listing = "\n".join(f"- {option}" for option in options)
    if config.allowMultiple:
        limit = (
            f"up to {config.maxSelections} options" if config.maxSelections else "one or more options"
        )
    else:
        limit = "exactly one option"
    return (
        f"Choose {limit} from the list below that best describe this repository.\n"
        f"{listing}\n"
        '- "selections": the chosen options, copied verbatim from the list'
    )


_INSTRUCTIONS = {
    EvaluationKind.YES_NO: _yes_no_instructions,
    EvaluationKind.RANGE: _range_instructions,
    EvaluationKind.COMMENTS: _comments_instructions,
    EvaluationKind.CODE_EXAMPLES: _code_examples_instructions,
    EvaluationKind.OPTIONS: _options_instructions,
}


def build_prompt(payload: RubricItemPayload) -> str:
    """
    Build the evaluator prompt for one rubric item.

    Args:
        payload: Rubric item snapshot plus repository content

    Returns:
        Prompt text ending with kind-specific answer instructions
    """
    kind = _kind(payload.evaluation_type)
    config = _config(payload.config)
    return f"{_base_prompt(payload)}\n\n{_INSTRUCTIONS[kind](config)}"


# Result validation


def _coerce(kind: EvaluationKind, response: Any) -> BaseModel:
    model = OUTPUT_MODELS[kind]
    if isinstance(response, model):
        return response
    try:
        if isinstance(response, BaseModel):
            raw = response.model_dump_json()
        else:
            raw = json.dumps(response)
    except (TypeError, ValueError) as e:
        raise ResultValidationError(
            f"Response for {kind.value} is not JSON-serializable: {e}",
            evaluation_type=kind.value,
        ) from e
    # JSON input keeps strict validation while accepting objects for nested models
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise ResultValidationError(
            f"Response does not match the {kind.value} result shape: {e.error_count()} error(s)",
            evaluation_type=kind.value,
        ) from e


def _validate_yes_no(result: YesNoResult, config: RubricItemConfig) -> Dict[str, Any]:
    if config.requireJustification and not result.justification.strip():
        raise ResultValidationError("Justification is required", evaluation_type="yes_no")
    return {"value": result.value, "justification": result.justification}


def _validate_range(result: RangeResult, config: RubricItemConfig) -> Dict[str, Any]:
    low, high = range_bounds(config)
    if low > high:
        raise ResultValidationError(
            f"Range configuration is inverted: min {low:g} > max {high:g}", evaluation_type="range"
        )
    if not low <= result.value <= high:
        raise ResultValidationError(
            f"Value {result.value:g} is outside the range [{low:g}, {high:g}]",
            evaluation_type="range",
        )
    # Bounds always come from the item configuration, not from the evaluator's echo
    return {"value": result.value, "min": low, "max": high, "rationale": result.rationale}


def _validate_comments(result: CommentsResult, config: RubricItemConfig) -> Dict[str, Any]:
    if not result.feedback.strip():
        raise ResultValidationError("Feedback must not be empty", evaluation_type="comments")
    return {"feedback": result.feedback}


def _validate_code_examples(result: CodeExamplesResult, config: RubricItemConfig) -> Dict[str, Any]:
    if config.maxExamples is not None and len(result.examples) > config.maxExamples:
        raise ResultValidationError(
            f"Got {len(result.examples)} examples, at most {config.maxExamples} allowed",
            evaluation_type="code_examples",
        )
    for example in result.examples:
        if example.lineStart > example.lineEnd:
            raise ResultValidationError(
                f"Example in {example.filePath} has lineStart {example.lineStart} "
                f"after lineEnd {example.lineEnd}",
                evaluation_type="code_examples",
            )
    return {"examples": [example.model_dump() for example in result.examples]}


def _validate_options(result: OptionsResult, config: RubricItemConfig) -> Dict[str, Any]:
    options = config.options or []
    if not options:
        raise ResultValidationError("Rubric item has no configured options", evaluation_type="options")

    # Counts apply to what the evaluator returned, before duplicates collapse
    count = len(result.selections)
    if not count:
        raise ResultValidationError("At least one option must be selected", evaluation_type="options")
    if not config.allowMultiple and count != 1:
        raise ResultValidationError(
            f"Exactly one option must be selected, got {count}", evaluation_type="options"
        )
    if config.allowMultiple and config.maxSelections and count > config.maxSelections:
        raise ResultValidationError(
            f"Got {count} selections, at most {config.maxSelections} allowed",
            evaluation_type="options",
        )

    canonical = {option.strip().lower(): option for option in options}
    selections: List[str] = []
    for selection in result.selections:
        match: Optional[str] = canonical.get(selection.strip().lower())
        if match is None:
            raise ResultValidationError(
                f"Selection '{selection}' is not one of the configured options",
                evaluation_type="options",
            )
        if match not in selections:
            selections.append(match)
    return {"selections": selections}


_VALIDATORS = {
    EvaluationKind.YES_NO: _validate_yes_no,
    EvaluationKind.RANGE: _validate_range,
    EvaluationKind.COMMENTS: _validate_comments,
    EvaluationKind.CODE_EXAMPLES: _validate_code_examples,
    EvaluationKind.OPTIONS: _validate_options,
}


def validate_result(
    kind: Union[str, EvaluationKind],
    config: Union[None, Mapping[str, Any], RubricItemConfig],
    response: Any,
) -> Dict[str, Any]:
    """
    Validate an evaluator response and return the result to persist.

    Args:
        kind: Evaluation kind of the rubric item
        config: Rubric item configuration snapshot
        response: Evaluator output (model instance or plain dict)

    Returns:
        JSON-serializable result dict in the kind's shape

    Raises:
        ResultValidationError: If the response violates the kind's rules
    """
    evaluation_kind = _kind(kind)
    result = _coerce(evaluation_kind, response)
    return _VALIDATORS[evaluation_kind](result, _config(config))

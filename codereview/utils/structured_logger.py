import json
import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _emit(payload: Dict[str, Any], level: int = logging.INFO) -> None:
    logger.log(level, json.dumps(payload, default=str))


def request_start(endpoint: str, user_id: Optional[str] = None, **additional_fields: Any) -> float:
    """
    Emit a structured request_start log and return the start_time (epoch seconds) for duration calculation.
    """
    start_time = time.time()
    payload: Dict[str, Any] = {
        "event": "request_start",
        "endpoint": endpoint,
        "user_id": user_id,
    }
    payload.update(additional_fields)
    _emit(payload)
    return start_time


def request_end(endpoint: str, start_time: float, user_id: Optional[str] = None, http_status: int = 200, **additional_fields: Any) -> None:
    """
    Emit a structured request_end log with response_time_ms.
    """
    payload: Dict[str, Any] = {
        "event": "request_end",
        "endpoint": endpoint,
        "user_id": user_id,
        "http_status": http_status,
        "response_time_ms": int((time.time() - start_time) * 1000),
    }
    payload.update(additional_fields)
    _emit(payload)


def request_error(endpoint: str, start_time: float, user_id: Optional[str] = None, http_status: int = 500, error: Optional[str] = None, **additional_fields: Any) -> None:
    """
    Emit a structured request_error log; 4xx at warning level, 5xx at error level.
    """
    payload: Dict[str, Any] = {
        "event": "request_error",
        "endpoint": endpoint,
        "user_id": user_id,
        "http_status": http_status,
        "response_time_ms": int((time.time() - start_time) * 1000),
    }
    if error is not None:
        payload["error"] = error
    payload.update(additional_fields)
    _emit(payload, logging.WARNING if 400 <= http_status < 500 else logging.ERROR)


def analysis_event(event: str, analysis_id: str, **fields: Any) -> None:
    """
    Emit a structured analysis lifecycle event, e.g. analysis_created,
    item_settled or analysis_failed.
    """
    payload: Dict[str, Any] = {"event": event, "analysis_id": analysis_id}
    payload.update(fields)
    level = logging.WARNING if event.endswith("_failed") else logging.INFO
    _emit(payload, level)

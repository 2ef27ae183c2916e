"""Logging and telemetry for the advisory analysis gateway.

Emits structured log records to stdout and appends them to an append-only
log file for local review.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("analysis_gateway")


def setup_logging(log_file: str, level: int = logging.INFO) -> None:
    """Configure the gateway logger with stdout and file handlers.

    Args:
        log_file: Path to the append-only log file.
        level: Minimum level for both handlers.
    """
    logger.setLevel(level)

    if not logger.handlers:
        stdout_handler = logging.StreamHandler()
        stdout_handler.setLevel(level)
        stdout_fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        stdout_handler.setFormatter(stdout_fmt)
        logger.addHandler(stdout_handler)

        log_path = Path(log_file)
        os.makedirs(log_path.parent, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a")
        file_handler.setLevel(level)
        file_handler.setFormatter(stdout_fmt)
        logger.addHandler(file_handler)


def log_request(
    *,
    request_id: str,
    operation: str,
    outcome: str,
    model: Optional[str] = None,
    category: Optional[str] = None,
    request_time_ms: Optional[float] = None,
    usage: Optional[Dict[str, Any]] = None,
    provenance: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a single dispatch event.

    This writes a structured JSON line to both stdout and the log file.

    Args:
        request_id: Gateway-assigned request ID.
        operation: What was dispatched (e.g. "analysis", "debt_strategy").
        outcome: Short outcome label (e.g. "success", "preflight_failed").
        model: The provider model id, if the call got that far.
        category: Error category for failed calls.
        request_time_ms: Wall time spent on the call.
        usage: Token usage dict if available.
        provenance: Provenance of the recovered document, if any.
        error: Error message if the request failed.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "operation": operation,
        "outcome": outcome,
    }

    if model:
        record["model"] = model

    if request_time_ms is not None:
        record["request_time_ms"] = round(request_time_ms, 1)

    if category:
        record["category"] = category

    if usage:
        record["usage"] = usage

    if provenance:
        record["provenance"] = provenance

    if error:
        record["error"] = error

    if category:
        logger.warning(json.dumps(record))
    else:
        logger.info(json.dumps(record))

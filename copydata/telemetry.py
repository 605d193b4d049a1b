#!/usr/bin/env python3
"""
================================================================================
copydata/telemetry.py - Event Log for Copy Runs
================================================================================

PURPOSE:
    Append-only JSONL record of what each copy run did: which fragments were
    accepted or rejected, which units crossed the execution channel and how
    long they took, and what teardown removed. Operators use it to tell an
    agent refusal from an unsafe path after the fact.

SECURITY:
    - Secrets are redacted and ANSI sequences stripped before writing
    - Long strings are truncated
    - Event files are created with 0600 permissions
    - Unknown fields are dropped (frozen schema)

EVENT SCHEMA (v1.0 - FROZEN):
    {
        "event_version": "1.0",
        "ts": "ISO8601 timestamp",
        "run_id": "unique run identifier",
        "stage": "syntax|exists|containment|copy|chmod|teardown|channel",
        "level": "info|warn|error",
        "event_type": "fragment_copied|fragment_rejected|channel.call|teardown|...",
        "message": "human-readable message (truncated to 500 chars)",
        "fragment": "configured fragment, if any",
        "unit": "unit name for channel events",
        "status": "channel status for channel events",
        "latency_ms": 0,
        "manifest_size": 0,
        "error": "error message if level=error (truncated)"
    }

CONFIG:
    COPYDATA_TELEMETRY=1   enable event writing (off by default)
    COPYDATA_DIR           base directory (default ~/.local/copydata)
    RUN_ID                 run identifier (generated when absent)
    TELEMETRY_BATCH        events buffered before a flush (default 10)

================================================================================
"""

import atexit
import json
import os
import re
import stat
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

# =============================================================================
# CONFIGURATION
# =============================================================================

COPYDATA_DIR = os.environ.get("COPYDATA_DIR", os.path.expanduser("~/.local/copydata"))

RUN_ID = os.environ.get("RUN_ID", "")

TELEMETRY_BATCH = int(os.environ.get("TELEMETRY_BATCH", "10"))

EVENT_VERSION = "1.0"

ALLOWED_EVENT_FIELDS: Set[str] = {
    "event_version",
    "ts",
    "run_id",
    "stage",
    "level",
    "event_type",
    "message",
    "fragment",
    "unit",
    "status",
    "latency_ms",
    "manifest_size",
    "error",
}

# =============================================================================
# SECRET REDACTION PATTERNS
# =============================================================================

SECRET_PATTERNS = [
    (r"ghp_[a-zA-Z0-9]{36}", "[GITHUB_TOKEN]"),
    (r"glpat-[a-zA-Z0-9\-]{20,}", "[GITLAB_TOKEN]"),
    (r"sk-[a-zA-Z0-9]{20,}", "[OPENAI_KEY]"),
    (r"Bearer\s+[\w\-]{20,}", "[BEARER_TOKEN]"),
    (r'(?i)(api[_-]?key|apikey|secret[_-]?key)\s*[:=]\s*["\']?[\w\-]{20,}', "[API_KEY]"),
    (r"AKIA[0-9A-Z]{16}", "[AWS_KEY]"),
    (r"-----BEGIN\s+(RSA\s+)?PRIVATE\s+KEY-----", "[PRIVATE_KEY]"),
    (r'token[_-]?(id|key)?\s*[:=]\s*["\']?[\w\-]{20,}', "[TOKEN]"),
]

ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

MAX_MESSAGE_LENGTH = 500
MAX_ERROR_LENGTH = 200
MAX_FIELD_LENGTH = 100


def redact_secrets(text: str) -> str:
    """Strip ANSI sequences and replace anything that looks like a secret."""
    if not isinstance(text, str):
        return str(text)

    text = ANSI_ESCAPE.sub("", text)

    for pattern, replacement in SECRET_PATTERNS:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)

    return text


def truncate_string(text: str, max_length: int) -> str:
    """Truncate string to max length."""
    if not isinstance(text, str):
        text = str(text)
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text


def sanitize_for_log(value: Any, max_length: int = MAX_MESSAGE_LENGTH) -> Any:
    """Redact and truncate strings; pass numbers, bools and None through."""
    if isinstance(value, str):
        return truncate_string(redact_secrets(value), max_length)
    elif isinstance(value, (int, float, bool, type(None))):
        return value
    else:
        return truncate_string(redact_secrets(str(value)), max_length)


# =============================================================================
# GLOBAL STATE
# =============================================================================

_event_buffer: List[Dict[str, Any]] = []

_lock = threading.RLock()

_atexit_registered = False


def is_enabled() -> bool:
    """Telemetry is opt-in."""
    return os.environ.get("COPYDATA_TELEMETRY", "0").strip().lower() in ("1", "true", "yes")


# =============================================================================
# PATH MANAGEMENT
# =============================================================================


def get_run_id() -> str:
    """Get or generate the run ID (RUN_ID env var wins)."""
    global RUN_ID
    if not RUN_ID:
        RUN_ID = os.environ.get("RUN_ID", "")
    if not RUN_ID:
        RUN_ID = f"run_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{str(uuid.uuid4())[:8]}"
    return RUN_ID


def get_run_dir(run_id: Optional[str] = None) -> Path:
    """Run directory; the run id is reduced to its basename."""
    if run_id is None:
        run_id = get_run_id()
    return Path(COPYDATA_DIR) / "runs" / os.path.basename(run_id)


def get_events_path(run_id: Optional[str] = None) -> Path:
    """Get the event log file path."""
    return get_run_dir(run_id) / "events.jsonl"


# =============================================================================
# EVENTS
# =============================================================================


def emit_event(
    event_type: str,
    message: str,
    level: str = "info",
    stage: Optional[str] = None,
    fragment: Optional[str] = None,
    unit: Optional[str] = None,
    status: Optional[str] = None,
    latency_ms: Optional[int] = None,
    manifest_size: Optional[int] = None,
    error: Optional[str] = None,
) -> None:
    """
    Buffer one event and flush when the batch is full.

    Does nothing unless telemetry is enabled. Never raises into the caller.
    """
    global _atexit_registered

    if not is_enabled():
        return

    event = {
        "event_version": EVENT_VERSION,
        "ts": datetime.now(timezone.utc).isoformat(),
        "run_id": get_run_id(),
        "stage": stage,
        "level": level,
        "event_type": event_type,
        "message": message,
        "fragment": fragment,
        "unit": unit,
        "status": status,
        "latency_ms": latency_ms,
        "manifest_size": manifest_size,
        "error": error,
    }

    event = {k: v for k, v in event.items() if v is not None and k in ALLOWED_EVENT_FIELDS}

    event["message"] = sanitize_for_log(event.get("message", ""), MAX_MESSAGE_LENGTH)
    if "error" in event:
        event["error"] = sanitize_for_log(event["error"], MAX_ERROR_LENGTH)
    for key in ("fragment", "unit", "status", "stage"):
        if key in event:
            event[key] = sanitize_for_log(event[key], MAX_FIELD_LENGTH)

    with _lock:
        _event_buffer.append(event)

        if not _atexit_registered:
            atexit.register(flush_events)
            _atexit_registered = True

        if len(_event_buffer) >= TELEMETRY_BATCH:
            flush_events()


def flush_events() -> None:
    """Append buffered events to events.jsonl (0600)."""
    global _event_buffer

    with _lock:
        if not _event_buffer:
            return

        events_file = get_events_path()

        try:
            events_file.parent.mkdir(parents=True, exist_ok=True)

            with open(events_file, "a") as f:
                for event in _event_buffer:
                    f.write(json.dumps(event) + "\n")

            os.chmod(events_file, stat.S_IRUSR | stat.S_IWUSR)

        except OSError as e:
            print(f"[ERROR] Failed to write events: {e}", file=sys.stderr)

        _event_buffer = []

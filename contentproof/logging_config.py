"""
Logging configuration for ContentProof.

Structured JSON logs on stderr (stdout is reserved for command output), a
per-invocation request id carried in a ``ContextVar``, and an audit logger
that emits one typed event per registration step, verdict and binding
decision.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, TextIO

request_id_var: ContextVar[str] = ContextVar('contentproof_request_id', default='')

SENSITIVE_KEYS = frozenset({
    "privatekey", "private_key", "apikey", "api_key", "x-api-key",
    "web3storagetoken", "pinatajwt", "infuraprojectsecret",
    "secret", "password", "token", "authorization",
})

REDACTED = "[REDACTED]"

# Chatty transport loggers kept at WARNING unless DEBUG is requested
_NOISY_LOGGERS = ("urllib3", "web3", "botocore", "boto3", "multipart")


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        rid = request_id_var.get()
        if rid:
            entry["request_id"] = rid
        event = getattr(record, "event", None)
        if event:
            entry.update(event)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Typed provenance events on the ``contentproof.audit`` logger.

    Each event is a normal log record with an ``event`` attribute that the
    structured formatter merges into the JSON line.
    """

    def __init__(self, name: str = "contentproof.audit"):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event_type: str, message: str, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, "%s: %s", event_type, message,
                         extra={"event": {"event_type": event_type, **fields}})

    def registration_step(self, content_hash: str, stage: str, **details: Any) -> None:
        self._emit(logging.INFO, "REGISTRATION_STEP", f"{stage} completed",
                   content_hash=content_hash, stage=stage, **details)

    def registration_skipped_existing(self, content_hash: str, chain_id: int, tx_hash: Optional[str]) -> None:
        """Existing registry entry; nothing was submitted."""
        self._emit(logging.INFO, "REGISTRATION_SKIPPED_EXISTING",
                   f"{content_hash} already registered on chain {chain_id}",
                   content_hash=content_hash, chain_id=chain_id, tx_hash=tx_hash)

    def registration_complete(self, content_hash: str, manifest_uri: str, tx_hash: Optional[str]) -> None:
        self._emit(logging.INFO, "REGISTRATION_COMPLETE", f"registered {content_hash}",
                   content_hash=content_hash, manifest_uri=manifest_uri, tx_hash=tx_hash)

    def storage_upload(self, provider: str, uri: str, size: int) -> None:
        self._emit(logging.INFO, "STORAGE_UPLOAD", f"{size} bytes via {provider}",
                   provider=provider, uri=uri, size=size)

    def verification_verdict(
        self,
        status: str,
        content_hash: Optional[str],
        reasons: Optional[List[str]] = None,
    ) -> None:
        """Negative verdicts are logged at WARNING."""
        level = logging.INFO if status == "verified" else logging.WARNING
        self._emit(level, "VERIFICATION_VERDICT", status,
                   status=status, content_hash=content_hash, reasons=list(reasons or []))

    def binding_decision(
        self,
        caller: str,
        platforms: Iterable[str],
        allowed: bool,
        missing_provider: Optional[str] = None,
    ) -> None:
        level = logging.INFO if allowed else logging.WARNING
        self._emit(level, "BINDING_DECISION", "allowed" if allowed else f"denied, link {missing_provider}",
                   caller=caller, platforms=list(platforms), allowed=allowed,
                   missing_provider=missing_provider)

    def rate_limit_exceeded(self, caller: str, endpoint: str) -> None:
        self._emit(logging.WARNING, "RATE_LIMIT_EXCEEDED", f"{caller} on {endpoint}",
                   caller=caller, endpoint=endpoint)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Replace root handlers with a stderr handler (and optionally a file).

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: Structured JSON lines; plain text otherwise
        log_file: Also append to this file
        stream: Override the console stream (default ``sys.stderr``)
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level {level!r}")

    formatter: logging.Formatter
    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)-7s %(name)s: %(message)s')

    handlers: List[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(numeric)

    quiet = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context; a random one when not given."""
    rid = request_id or uuid.uuid4().hex
    request_id_var.set(rid)
    return rid


def get_request_id() -> str:
    return request_id_var.get()


def sanitize_for_logging(data: Any) -> Any:
    """
    Deep copy of ``data`` with credential values replaced by ``[REDACTED]``.

    Keys are matched case-insensitively against ``SENSITIVE_KEYS``.
    """
    if isinstance(data, dict):
        clean = {}
        for key, value in data.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_KEYS and value is not None:
                clean[key] = REDACTED
            else:
                clean[key] = sanitize_for_logging(value)
        return clean
    if isinstance(data, (list, tuple)):
        return [sanitize_for_logging(item) for item in data]
    return data


audit_log = AuditLogger()

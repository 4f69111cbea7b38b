"""Logging setup for the autobot process.

``configure_logging()`` is called once by ``autobot serve``; the CLI's
read-only commands leave the root logger alone.

Events are snake_case names (``service_fire_skipped``) with their context
passed through ``extra`` under dotted keys (``service.id``, ``task.id``).
The console shows ``component | event [key=value ...]``; the optional file
sink writes one JSON object per line into a file per UTC day.

Runner failures carry model CLI stderr, which can echo provider credentials,
so both sinks pass text through ``redact_secrets()``.
"""

import json
import logging
import os
import re
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, TextIO

LOG_RETENTION_DAYS = 7
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Provider API keys (sk-..., sk-ant-...)
    re.compile(r"\b(sk-[A-Za-z0-9_-]{20,})"),
    # FOO_API_KEY=..., ANTHROPIC_TOKEN: ...
    re.compile(
        r"\b[A-Z0-9_]+(?:KEY|TOKEN|SECRET)\s*[=:]\s*([^\s\"']{8,})", re.IGNORECASE
    ),
)

_QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "uvicorn.access")

_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "component"}


def _mask(match: re.Match[str]) -> str:
    secret = match.group(1)
    hidden = "***" if len(secret) < 12 else f"{secret[:4]}...{secret[-4:]}"
    return match.group(0).replace(secret, hidden)


def redact_secrets(text: str) -> str:
    """Mask credentials in ``text``, keeping four characters at each end."""
    for pattern in SECRET_PATTERNS:
        text = pattern.sub(_mask, text)
    return text


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Fields a log call passed through ``extra=``."""
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}


def component_of(logger_name: str) -> str:
    """``autobot.scheduling.engine`` -> ``scheduling``; other loggers keep their root."""
    root, _, rest = logger_name.partition(".")
    if root == "autobot" and rest:
        return rest.partition(".")[0]
    return root


def prune_old_logs(logs_dir: Path, retention_days: int = LOG_RETENTION_DAYS) -> int:
    """Remove ``*.jsonl`` files not modified within the retention window.

    Returns:
        Number of files removed.
    """
    if not logs_dir.is_dir():
        return 0
    cutoff = (datetime.now(UTC) - timedelta(days=retention_days)).timestamp()
    removed = 0
    for path in logs_dir.glob("*.jsonl"):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except OSError:
            continue
    return removed


class EventFormatter(logging.Formatter):
    """Console formatter: adds ``%(component)s`` and trails the extras."""

    def format(self, record: logging.LogRecord) -> str:
        record.component = component_of(record.name)
        line = super().format(record)
        extras = record_extras(record)
        if extras:
            pairs = " ".join(f"{key}={extras[key]}" for key in sorted(extras))
            line = f"{line} [{pairs}]"
        return redact_secrets(line)


class DailyJsonlHandler(logging.Handler):
    """Appends each record as a JSON line to ``<logs_dir>/<YYYY-MM-DD>.jsonl``.

    The file is reopened when the UTC date changes, and files past retention
    are pruned at that point.
    """

    def __init__(self, logs_dir: Path, retention_days: int = LOG_RETENTION_DAYS) -> None:
        super().__init__()
        logs_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir = logs_dir
        self.retention_days = retention_days
        self._day: str | None = None
        self._stream: TextIO | None = None

    def _stream_for(self, day: str) -> TextIO:
        if self._stream is None or day != self._day:
            if self._stream is not None:
                self._stream.close()
            self._stream = (self.logs_dir / f"{day}.jsonl").open("a", encoding="utf-8")
            self._day = day
            prune_old_logs(self.logs_dir, self.retention_days)
        return self._stream

    def _entry(self, record: logging.LogRecord, now: datetime) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "ts": now.isoformat(),
            "level": record.levelname,
            "component": component_of(record.name),
            "logger": record.name,
            "message": redact_secrets(record.getMessage()),
        }
        extras = record_extras(record)
        if extras:
            entry["extra"] = {
                key: redact_secrets(value) if isinstance(value, str) else value
                for key, value in extras.items()
            }
        if record.exc_info:
            formatter = self.formatter or logging.Formatter()
            entry["exception"] = redact_secrets(formatter.formatException(record.exc_info))
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            now = datetime.now(UTC)
            line = json.dumps(self._entry(record, now), default=str)
            stream = self._stream_for(now.strftime("%Y-%m-%d"))
            stream.write(line + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        super().close()


def configure_logging(
    level: str | None = None,
    use_rich: bool = False,
    log_to_file: bool = False,
    logs_dir: Path | None = None,
) -> None:
    """Install the root handlers.

    Args:
        level: One of DEBUG/INFO/WARNING/ERROR; falls back to
            ``AUTOBOT_LOG_LEVEL`` and then INFO.
        use_rich: Render the console through rich (``autobot serve``).
        log_to_file: Also write the daily JSONL files.
        logs_dir: Where the JSONL files go; defaults to ``~/.autobot/logs``.
    """
    from autobot.config.paths import get_logs_path

    name = (level or os.environ.get("AUTOBOT_LOG_LEVEL") or "INFO").upper()
    log_level = getattr(logging, name if name in LOG_LEVELS else "INFO")

    console: logging.Handler
    if use_rich:
        from rich.logging import RichHandler

        console = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
        console.setFormatter(EventFormatter("%(component)s | %(message)s"))
    else:
        console = logging.StreamHandler()
        console.setFormatter(
            EventFormatter(
                "%(asctime)s %(levelname)-7s %(component)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    handlers: list[logging.Handler] = [console]
    if log_to_file:
        handlers.append(DailyJsonlHandler(logs_dir or get_logs_path()))

    logging.basicConfig(level=log_level, handlers=handlers, force=True)
    for logger_name in _QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    # uvicorn installs its own handlers unless routed through ours
    for logger_name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = list(handlers)
        uvicorn_logger.propagate = False

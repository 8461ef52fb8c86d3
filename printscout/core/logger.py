"""Structured logging: console lines plus a JSON-lines search event log."""

import contextvars
import json
import logging
import os
import sys
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from printscout.core.config import config


def _format_duration(seconds: float) -> str:
    if seconds < 0:
        return "0ms"
    if seconds >= 1:
        return f"{seconds:.1f}s"
    if seconds > 0:
        return f"{seconds * 1000:.0f}ms"
    return "0ms"


def _short(text: str | None, max_len: int = 80) -> str:
    """One-line preview for console output."""
    if not text or not text.strip():
        return ""
    s = text.strip().replace("\n", " ")
    return s[:max_len] + "..." if len(s) > max_len else s


_log_generation: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "log_generation", default=None
)


def _use_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    try:
        return sys.stdout.isatty()
    except Exception:
        return False


def _c(role: str) -> str:
    if not _use_color():
        return ""
    # 38;5;N = foreground 256-color
    codes = {
        "dim": "\033[38;5;239m",
        "source": "\033[38;5;81m",
        "ok": "\033[38;5;78m",
        "fail": "\033[38;5;203m",
        "duration": "\033[38;5;221m",
        "phase": "\033[38;5;245m",
    }
    return codes.get(role, "")


def _reset() -> str:
    if not _use_color():
        return ""
    return "\033[0m"


@dataclass
class LogEvent:
    event_type: str
    timestamp: str
    data: dict[str, Any]

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class PrintScoutLogger:
    def __init__(self):
        config.logs_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = config.logs_dir / "search.log"
        self._file_lock = threading.Lock()
        self._log_file_handle = open(self.log_file, "a", encoding="utf-8")
        self._setup_console_logger()

    def _setup_console_logger(self):
        self.console = logging.getLogger("printscout")
        self.console.setLevel(logging.DEBUG)
        self._console_formatter = logging.Formatter(
            "%(asctime)s │ %(message)s", datefmt="%H:%M:%S"
        )
        if not self.console.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(logging.INFO)
            handler.setFormatter(self._console_formatter)
            self.console.addHandler(handler)
        # httpx logs every request at INFO; keep it out of the search trace
        logging.getLogger("httpx").setLevel(logging.WARNING)

    def log_event(self, event: LogEvent) -> None:
        with self._file_lock:
            self._log_file_handle.write(event.to_json() + "\n")
            self._log_file_handle.flush()

    def _timestamp(self) -> str:
        return datetime.now().isoformat()

    def _prefix(self) -> str:
        generation = _log_generation.get()
        if generation is None:
            return ""
        return f"{_c('dim')}[gen {generation}]{_reset()} "

    def set_generation(self, generation: int | None) -> None:
        """Tag subsequent console lines in this task context with a generation number."""
        _log_generation.set(generation)

    def search_issued(self, generation: int, request: dict[str, Any]) -> None:
        event = LogEvent(
            event_type="SEARCH_ISSUED",
            timestamp=self._timestamp(),
            data={"generation": generation, "request": request},
        )
        self.log_event(event)
        query = _short(request.get("query"), 60) or "(trending)"
        self.console.info(
            f"{self._prefix()}Search: {query}  page={request.get('page')} "
            f"sort={request.get('sort_by') or 'default'}"
        )

    def source_result(
        self,
        source: str,
        *,
        ok: bool,
        count: int,
        total: int,
        duration_seconds: float,
        error_reason: str | None = None,
    ) -> None:
        data: dict[str, Any] = {
            "source": source,
            "ok": ok,
            "count": count,
            "total": total,
            "duration_seconds": round(duration_seconds, 3),
            "generation": _log_generation.get(),
        }
        if not ok and error_reason:
            data["error_reason"] = error_reason[:500]
        self.log_event(
            LogEvent(event_type="SOURCE_RESULT", timestamp=self._timestamp(), data=data)
        )
        dur = f"{_c('duration')}{_format_duration(duration_seconds)}{_reset()}"
        status = f"{_c('ok')}[ok]{_reset()}" if ok else f"{_c('fail')}[failed]{_reset()}"
        reason = f"  {_short(error_reason)}" if not ok and error_reason else ""
        self.console.info(
            f"{self._prefix()}{_c('source')}{source}{_reset()}  {count} items "
            f"(~{total})  in {dur}  {status}{reason}"
        )

    def snapshot_published(
        self,
        phase: str,
        outcome: str,
        item_count: int,
        estimated_total: int,
    ) -> None:
        event = LogEvent(
            event_type="SNAPSHOT_PUBLISHED",
            timestamp=self._timestamp(),
            data={
                "generation": _log_generation.get(),
                "phase": phase,
                "outcome": outcome,
                "items": item_count,
                "estimated_total": estimated_total,
            },
        )
        self.log_event(event)
        self.console.info(
            f"{self._prefix()}{_c('phase')}{phase}{_reset()} page: {item_count} items "
            f"of ~{estimated_total}  [{outcome}]"
        )

    def llm_request(self, model: str, prompt_preview: str = "") -> None:
        event = LogEvent(
            event_type="LLM_REQUEST",
            timestamp=self._timestamp(),
            data={"model": model, "prompt_preview": prompt_preview[:200]},
        )
        self.log_event(event)
        self.console.debug(f"{self._prefix()}LLM call [{model}]")

    def llm_response(
        self,
        model: str,
        *,
        token_count: int,
        duration_seconds: float,
        chars: int,
    ) -> None:
        event = LogEvent(
            event_type="LLM_RESPONSE",
            timestamp=self._timestamp(),
            data={
                "model": model,
                "token_count": token_count,
                "duration_seconds": round(duration_seconds, 3),
                "chars": chars,
            },
        )
        self.log_event(event)
        dur = f"{_c('duration')}{_format_duration(duration_seconds)}{_reset()}"
        self.console.info(f"{self._prefix()}LLM [{model}] {token_count} tokens in {dur}")

    def stale_discarded(self, generation: int, current: int, what: str) -> None:
        # Superseded responses are routine; never reported above debug.
        self.console.debug(
            f"Discarded stale {what} from generation {generation} (current {current})"
        )

    def error(self, message: str, *args, exception: Exception | None = None, **kwargs):
        event = LogEvent(
            event_type="ERROR",
            timestamp=self._timestamp(),
            data={
                "message": message,
                "exception": str(exception) if exception else None,
            },
        )
        self.log_event(event)

        allowed = {"exc_info", "stack_info", "stacklevel", "extra"}
        log_kwargs = {k: v for k, v in kwargs.items() if k in allowed}
        if exception and "exc_info" not in log_kwargs:
            log_kwargs["exc_info"] = exception

        self.console.error(f"{self._prefix()}Error: {message}", *args, **log_kwargs)

    def info(self, message: str, *args, **kwargs):
        allowed = {"exc_info", "stack_info", "stacklevel", "extra"}
        log_kwargs = {k: v for k, v in kwargs.items() if k in allowed}
        self.console.info(f"{self._prefix()}{message}", *args, **log_kwargs)

    def warning(self, message: str, *args, **kwargs):
        event = LogEvent(
            event_type="WARNING",
            timestamp=self._timestamp(),
            data={"message": message[:500]},
        )
        self.log_event(event)

        allowed = {"exc_info", "stack_info", "stacklevel", "extra"}
        log_kwargs = {k: v for k, v in kwargs.items() if k in allowed}
        self.console.warning(f"{self._prefix()}{message}", *args, **log_kwargs)

    def exception(self, message: str, *args, **kwargs):
        event = LogEvent(
            event_type="ERROR",
            timestamp=self._timestamp(),
            data={"message": message[:500]},
        )
        self.log_event(event)
        self.console.exception(f"{self._prefix()}{message}", *args, **kwargs)

    def debug(self, message: str, *args, **kwargs):
        allowed = {"exc_info", "stack_info", "stacklevel", "extra"}
        log_kwargs = {k: v for k, v in kwargs.items() if k in allowed}
        self.console.debug(f"{self._prefix()}{message}", *args, **log_kwargs)


logger = PrintScoutLogger()

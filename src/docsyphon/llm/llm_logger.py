"""
Audit trail of LLM traffic.

Each request, response, failure and cache hit becomes one JSON line in
``<log_directory>/llm/requests.log``, kept apart from the application log
so token spend can be tallied per run.
"""

import json
import logging
import logging.handlers
import time
from datetime import datetime, timezone
from typing import Any, Optional

from docsyphon.config import settings
from docsyphon.llm.providers.base import LLMResponse

logger = logging.getLogger(__name__)


def _preview(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


class LLMLogger:
    """Writes LLM interaction records when ``llm_logging_enabled`` is set.

    The file handler is attached lazily so that a disabled logger, or one
    built in tests, never touches the log directory.
    """

    def __init__(self, enabled: Optional[bool] = None):
        self.llm_logger = logging.getLogger("docsyphon.llm")
        self.enabled = settings.llm_logging_enabled if enabled is None else enabled
        self._handler_ready = False

    def _attach_handler(self) -> None:
        if self._handler_ready or not settings.log_file_enabled:
            return

        llm_dir = settings.log_directory / "llm"
        llm_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            llm_dir / "requests.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(
            logging.Formatter(
                fmt="[%(asctime)s] [%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        self.llm_logger.addHandler(handler)
        self.llm_logger.setLevel(logging.INFO)
        self.llm_logger.propagate = False
        self._handler_ready = True

    def _emit(self, kind: str, level: int = logging.INFO, **fields: Any) -> None:
        self._attach_handler()
        record = {
            "type": kind,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        self.llm_logger.log(level, f"{kind.upper()}: {json.dumps(record)}")

    def log_request(
        self,
        purpose: str,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        attempt: int = 1,
    ) -> str:
        """
        Record an outgoing request.

        Returns:
            Request id to pass to ``log_response`` / ``log_error``; empty
            when request logging is off.
        """
        if not self.enabled or not settings.llm_log_requests:
            return ""

        request_id = f"{purpose}_{int(time.time() * 1000)}"
        self._emit(
            "request",
            request_id=request_id,
            purpose=purpose,
            model=model,
            attempt=attempt,
            max_tokens=max_tokens,
            system_prompt_length=len(system_prompt),
            prompt_length=len(user_prompt),
            prompt_preview=_preview(user_prompt, 500),
        )
        return request_id

    def log_response(
        self,
        request_id: str,
        response: LLMResponse,
        cost_usd: Optional[float] = None,
    ) -> None:
        if not self.enabled or not settings.llm_log_responses:
            return

        fields: dict[str, Any] = {
            "request_id": request_id,
            "model": response.model,
            "finish_reason": response.finish_reason,
            "duration_ms": round(response.duration_ms, 2),
            "content_length": len(response.content),
        }
        if settings.llm_log_tokens:
            fields["tokens"] = {
                "prompt": response.prompt_tokens,
                "completion": response.completion_tokens,
                "total": response.total_tokens,
            }
            if cost_usd is not None:
                fields["cost_usd"] = round(cost_usd, 6)
        if response.content:
            fields["content_preview"] = _preview(response.content, 200)

        self._emit("response", **fields)

    def log_error(self, request_id: str, error: Exception, purpose: str = "") -> None:
        """Provider failures and responses that failed validation."""
        if not self.enabled:
            return
        self._emit(
            "error",
            logging.ERROR,
            request_id=request_id,
            purpose=purpose,
            error_type=type(error).__name__,
            error_message=str(error),
        )

    def log_cache_hit(self, purpose: str, model: str) -> None:
        if not self.enabled:
            return
        self._emit("cache_hit", purpose=purpose, model=model)


llm_logger = LLMLogger()

"""On-disk cache of validated LLM responses.

A rerun over the same window with unchanged prompts replays earlier
classification and proposal answers instead of paying for them again.
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class LLMResponseCache:
    """One JSON file per request, named by the request's SHA-256 key.

    Only content that already passed schema validation is stored, so a hit
    never needs re-validation. Entries past ``ttl_days`` count as misses and
    are deleted when touched.
    """

    def __init__(self, cache_dir: Path, ttl_days: int = 7):
        self.cache_dir = cache_dir
        self.ttl = timedelta(days=ttl_days)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def compute_key(
        purpose: str, model: str, system_prompt: str, user_prompt: str
    ) -> str:
        """Stable key over everything that shapes the answer."""
        material = "\n".join(
            [f"purpose:{purpose}", f"model:{model}", system_prompt, "---", user_prompt]
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    def get(
        self, purpose: str, model: str, system_prompt: str, user_prompt: str
    ) -> Optional[str]:
        """Cached raw content, or None on a miss, expiry or unreadable entry."""
        key = self.compute_key(purpose, model, system_prompt, user_prompt)
        path = self._path(key)
        if not path.exists():
            logger.debug(f"Cache miss: {purpose} {key[:12]}")
            return None

        entry = self._load(path)
        if entry is None:
            return None
        if self._expired(entry):
            logger.debug(f"Cache expired: {key[:12]}")
            path.unlink(missing_ok=True)
            return None

        logger.debug(f"Cache hit: {purpose} {key[:12]}")
        return entry.get("content")

    def set(
        self,
        purpose: str,
        model: str,
        system_prompt: str,
        user_prompt: str,
        content: str,
    ) -> None:
        """Store validated content. Write failures are logged, not raised."""
        key = self.compute_key(purpose, model, system_prompt, user_prompt)
        entry = {
            "cached_at": datetime.now(timezone.utc).isoformat(),
            "purpose": purpose,
            "model": model,
            "content": content,
        }
        try:
            self._path(key).write_text(json.dumps(entry, indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not cache {purpose} response {key[:12]}: {e}")
            return
        logger.debug(f"Cached response: {purpose} {key[:12]}")

    def clear(self) -> int:
        """Delete every entry; returns how many were removed."""
        removed = 0
        for path in self._entries():
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Could not remove {path}: {e}")
                continue
            removed += 1
        logger.info(f"Cleared {removed} cached LLM responses")
        return removed

    def clear_expired(self) -> int:
        """Delete expired and unreadable entries; returns how many were removed."""
        removed = 0
        for path in self._entries():
            entry = self._load(path)
            if entry is not None and not self._expired(entry):
                continue
            path.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.info(f"Cleared {removed} expired cache entries")
        return removed

    def stats(self) -> dict[str, int]:
        """Counts of total, valid and expired entries (unreadable counts as expired)."""
        total = valid = 0
        for path in self._entries():
            total += 1
            entry = self._load(path)
            if entry is not None and not self._expired(entry):
                valid += 1
        return {"total": total, "valid": valid, "expired": total - valid}

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def _entries(self) -> Iterator[Path]:
        return self.cache_dir.glob("*.json")

    def _load(self, path: Path) -> Optional[dict]:
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
            datetime.fromisoformat(entry["cached_at"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unreadable cache entry {path.name}: {e}")
            return None
        return entry

    def _expired(self, entry: dict) -> bool:
        cached_at = datetime.fromisoformat(entry["cached_at"])
        return datetime.now(timezone.utc) - cached_at > self.ttl

from __future__ import annotations

from dataclasses import dataclass
import logging

from essaycoach.domain.contracts import MAX_CONCURRENT_TASKS_KEY, EssayRepository
from essaycoach.domain.errors import DomainValidationError

MIN_CONCURRENT_TASKS = 1
MAX_CONCURRENT_TASKS = 20

logger = logging.getLogger("essaycoach.settings")


@dataclass
class GeneralSettingsService:
    """Key/value runtime settings persisted through the repository."""

    repository: EssayRepository
    default_max_concurrent_tasks: int = 1

    async def get_max_concurrent_tasks(self) -> int:
        try:
            value = await self.repository.get_setting(key=MAX_CONCURRENT_TASKS_KEY)
        except Exception:
            logger.warning("max concurrent tasks setting unreadable", exc_info=True)
            return self._default()
        if value is None:
            return self._default()
        try:
            parsed = int(value)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            logger.warning("max concurrent tasks setting is not a number")
            return self._default()
        if not MIN_CONCURRENT_TASKS <= parsed <= MAX_CONCURRENT_TASKS:
            return self._default()
        return parsed

    async def set_max_concurrent_tasks(self, value: int) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise DomainValidationError("max concurrent tasks must be an integer")
        if not MIN_CONCURRENT_TASKS <= value <= MAX_CONCURRENT_TASKS:
            raise DomainValidationError(
                f"max concurrent tasks must be between {MIN_CONCURRENT_TASKS} and {MAX_CONCURRENT_TASKS}"
            )
        await self.repository.set_setting(key=MAX_CONCURRENT_TASKS_KEY, value=value)
        logger.info("max concurrent tasks updated", extra={"counts": {"max_concurrent_tasks": value}})
        return value

    def _default(self) -> int:
        default = self.default_max_concurrent_tasks
        if MIN_CONCURRENT_TASKS <= default <= MAX_CONCURRENT_TASKS:
            return default
        return MIN_CONCURRENT_TASKS

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from common.utils import now_utc
from fastapi.concurrency import run_in_threadpool

from jobmatch.errors import AuthorizationError
from jobmatch.store import SqliteCatalogStore

LOGGER = logging.getLogger("jobmatch.usage")


class UsageGuard(Protocol):
    async def check(self, user_id: str) -> None: ...

    async def record(self, user_id: str) -> None: ...


def usage_period(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


class MonthlyUsageGuard:
    """Per-user monthly request counter; ``monthly_limit=None`` means unlimited."""

    def __init__(
        self,
        store: SqliteCatalogStore,
        *,
        monthly_limit: int | None = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.store = store
        self.monthly_limit = monthly_limit
        self._clock = clock

    async def check(self, user_id: str) -> None:
        if self.monthly_limit is None:
            return
        used = await run_in_threadpool(self.store.usage_count, user_id, usage_period(self._clock()))
        if used >= self.monthly_limit:
            LOGGER.info(
                json.dumps(
                    {"event": "usage_denied", "user_id": user_id, "used": used, "limit": self.monthly_limit}
                )
            )
            raise AuthorizationError(
                "You have reached your monthly AI usage limit", reason="limit_reached"
            )

    async def record(self, user_id: str) -> None:
        total = await run_in_threadpool(
            self.store.record_usage, user_id, usage_period(self._clock())
        )
        LOGGER.info(json.dumps({"event": "usage_recorded", "user_id": user_id, "total": total}))

from typing import Protocol, runtime_checkable

import structlog

from sandbox_pool.models.account import Account

logger = structlog.get_logger()


@runtime_checkable
class Eventer(Protocol):
    """
    Notification capability invoked by callers after a write has succeeded.
    Implementations must not assume they can undo the write.
    """

    async def account_create(self, account: Account) -> None: ...

    async def account_update(self, account: Account) -> None: ...

    async def account_delete(self, account: Account) -> None: ...

    async def account_reset(self, account: Account) -> None: ...


class LoggingEventer:
    """Eventer that records each account event as a structured log line."""

    def __init__(self, logger_name: str = "account_events"):
        self.logger = structlog.get_logger(logger_name)

    async def _emit(self, event: str, account: Account) -> None:
        self.logger.info(
            event,
            account_id=account.id,
            account_status=account.status,
            last_modified_on=account.last_modified_on,
        )

    async def account_create(self, account: Account) -> None:
        await self._emit("account_created", account)

    async def account_update(self, account: Account) -> None:
        await self._emit("account_updated", account)

    async def account_delete(self, account: Account) -> None:
        await self._emit("account_deleted", account)

    async def account_reset(self, account: Account) -> None:
        await self._emit("account_reset", account)

"""
Account lifecycle operations as seen by API handlers.

Each operation is one store write followed by an event. The event is
fire-after-success: a failing eventer is logged and never undoes or hides a
persisted change. StatusTransitionError from the store propagates unchanged;
this layer does not retry.
"""
from typing import Awaitable, Callable, Optional

import structlog

from sandbox_pool.core.exceptions import ValidationError
from sandbox_pool.db.store import LeaseStore
from sandbox_pool.models.account import Account, AccountStatus
from sandbox_pool.services.events import Eventer, LoggingEventer

logger = structlog.get_logger()


class AccountLifecycleService:
    def __init__(self, store: LeaseStore, eventer: Optional[Eventer] = None):
        self.store = store
        self.eventer = eventer or LoggingEventer()

    async def _notify(
        self, event: str, handler: Callable[[Account], Awaitable[None]], account: Account
    ) -> None:
        try:
            await handler(account)
        except Exception as e:
            logger.error(
                "account_event_failed", event=event, account_id=account.id, error=str(e)
            )

    async def create_account(self, account: Account) -> Account:
        """Onboard a new account into the pool, starting as NotReady."""
        if not account.id:
            raise ValidationError("failed to create account: missing ID")
        if not account.admin_role_arn:
            raise ValidationError(
                f"failed to create account {account.id}: missing AdminRoleArn",
                details={"account_id": account.id},
            )

        created = await self.store.create_account(
            account.model_copy(update={"status": AccountStatus.NOT_READY})
        )
        await self._notify("account_create", self.eventer.account_create, created)
        return created

    async def update_account(
        self, account: Account, last_modified_on: Optional[int] = None
    ) -> Account:
        """Overwrite an account, optionally only if nobody changed it since last_modified_on."""
        updated = await self.store.put_account(account, last_modified_on=last_modified_on)
        await self._notify("account_update", self.eventer.account_update, updated)
        return updated

    async def mark_ready(self, account_id: str) -> Account:
        """NotReady -> Ready once the account has been cleaned."""
        account = await self.store.transition_account_status(
            account_id, AccountStatus.NOT_READY, AccountStatus.READY
        )
        await self._notify("account_update", self.eventer.account_update, account)
        return account

    async def lease_account(self, account_id: str) -> Account:
        """Ready -> Leased."""
        account = await self.store.transition_account_status(
            account_id, AccountStatus.READY, AccountStatus.LEASED
        )
        await self._notify("account_update", self.eventer.account_update, account)
        return account

    async def reset_account(self, account_id: str) -> Account:
        """Leased -> NotReady when a lease ends and the account needs a reset."""
        account = await self.store.transition_account_status(
            account_id, AccountStatus.LEASED, AccountStatus.NOT_READY
        )
        await self._notify("account_reset", self.eventer.account_reset, account)
        return account

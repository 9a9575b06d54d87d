"""
Account / Lease persistence

The store is the only component allowed to read or write Account and Lease
items. Every public method performs exactly one DynamoDB request.

Status transitions are single conditional UpdateItem calls guarded on the
stored status, so two callers racing on the same `prev -> next` transition
cannot both win: the loser gets a StatusTransitionError. Nothing here
retries; that decision belongs to the caller.
"""
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from sandbox_pool.core.config import Settings, StoreConfig, get_settings
from sandbox_pool.core.exceptions import (
    AmbiguousResultError,
    BackingStoreError,
    ConflictError,
    ConfigurationError,
    LeaseNotFoundError,
    RecordMappingError,
    StatusTransitionError,
    ValidationError,
)
from sandbox_pool.db.expressions import build_update_expression
from sandbox_pool.db.serialization import (
    deserialize_item,
    marshal,
    serialize_value,
    unmarshal,
)
from sandbox_pool.db.session import dynamodb_client, get_boto_session
from sandbox_pool.models.account import (
    Account,
    AccountStatus,
    GetAccountsInput,
    GetAccountsOutput,
)
from sandbox_pool.models.base import DynamoRecord
from sandbox_pool.models.lease import (
    GetLeasesInput,
    GetLeasesOutput,
    Lease,
    LeaseStatus,
    LeaseStatusReason,
)

logger = structlog.get_logger()

RecordT = TypeVar("RecordT", bound=DynamoRecord)
StatusT = TypeVar("StatusT", bound=Enum)

# Secondary indexes
ACCOUNT_STATUS_INDEX = "AccountStatus"
LEASE_ID_INDEX = "LeaseId"
LEASE_PRINCIPAL_INDEX = "PrincipalId"

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"
SECONDS_PER_DAY = 86400


def _error_code(exc: BaseException) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


def _is_conditional_check_failure(exc: BaseException) -> bool:
    return _error_code(exc) == CONDITIONAL_CHECK_FAILED


def _backing_store_error(
    exc: BaseException, message: str, details: Optional[Dict[str, Any]] = None
) -> BackingStoreError:
    code = _error_code(exc)
    if code:
        message = f"{message} [{code}]"
    return BackingStoreError(
        f"{message}: {exc}",
        aws_error_code=code,
        details=details,
    )


def _status_value(status: Union[str, AccountStatus, LeaseStatus, LeaseStatusReason]) -> str:
    return status.value if hasattr(status, "value") else str(status)


def _coerce_status(
    status_type: Type[StatusT], status: Any, details: Dict[str, Any]
) -> StatusT:
    """Resolve a caller-supplied status, raising ValidationError for unknown values."""
    value = _status_value(status)
    try:
        return status_type(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in status_type)
        raise ValidationError(
            f'invalid {status_type.__name__} "{value}" (expected one of: {allowed})',
            details={**details, "status": value},
        ) from exc


def _unmarshal_all(record_type: Type[RecordT], items: List[Dict[str, Any]]) -> List[RecordT]:
    """
    Unmarshal a page of items. One unreadable item fails the whole call with
    RecordMappingError whose details carry that item's key.
    """
    key_attributes = [record_type.attribute_names()[name] for name in record_type.KEY_FIELDS]
    records = []
    for item in items:
        try:
            records.append(unmarshal(record_type, item))
        except RecordMappingError as exc:
            key = deserialize_item({name: item[name] for name in key_attributes if name in item})
            logger.error(
                "record_unmarshal_failed",
                record_type=record_type.__name__,
                key=key,
                error=exc.message,
            )
            raise RecordMappingError(
                f"{exc.message} (key: {key})", details={**exc.details, "key": key}
            ) from exc
    return records


class LeaseStore:
    """
    DynamoDB-backed store for pooled accounts and their leases.

    Holds no mutable state besides its configuration and session, so one
    instance can be shared by concurrent callers.
    """

    def __init__(
        self,
        config: StoreConfig,
        session: Any = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.config = config
        self.session = session or get_boto_session()
        self._clock = clock or (lambda: int(time.time()))

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "LeaseStore":
        """Build a store from environment settings (AWS_CURRENT_REGION, ACCOUNT_DB, LEASE_DB)."""
        settings = settings or get_settings()
        return cls(settings.store_config(), **kwargs)

    def _client(self) -> Any:
        return dynamodb_client(self.session, self.config)

    def now(self) -> int:
        return self._clock()

    def default_lease_expiry(self, now: Optional[int] = None) -> int:
        """Expiry timestamp for a new lease that did not request one."""
        start = self.now() if now is None else now
        return start + self.config.default_lease_length_in_days * SECONDS_PER_DAY

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def get_account(self, account_id: str) -> Optional[Account]:
        """
        Point lookup by account id.
        Returns None when no account exists; I/O failures raise BackingStoreError.
        """
        try:
            async with self._client() as client:
                result = await client.get_item(
                    TableName=self.config.account_table_name,
                    Key={"Id": serialize_value(account_id)},
                    ConsistentRead=self.config.consistent_read,
                )
        except (ClientError, BotoCoreError) as exc:
            logger.error("account_get_failed", account_id=account_id, error=str(exc))
            raise _backing_store_error(
                exc, f"Failed to get account {account_id}", {"account_id": account_id}
            ) from exc

        item = result.get("Item")
        if not item:
            return None
        return unmarshal(Account, item)

    async def find_accounts_by_status(
        self, status: Union[AccountStatus, str]
    ) -> List[Account]:
        """
        Query the status index. An empty list means no account has that status.

        A stored item that cannot be read back as an Account fails the query
        with RecordMappingError; details["key"] names the offending account.
        """
        status_value = _status_value(status)
        items = await self._query_index(
            table_name=self.config.account_table_name,
            index_name=ACCOUNT_STATUS_INDEX,
            attribute="AccountStatus",
            value=status_value,
            context={"status": status_value},
        )
        return _unmarshal_all(Account, items)

    async def get_accounts(self, query: Optional[GetAccountsInput] = None) -> GetAccountsOutput:
        """
        One page of an account scan, optionally filtered by status.

        Paginates like get_leases: feed next_keys back as start_keys until it
        comes back empty. Unreadable items raise RecordMappingError carrying
        their key, as in find_accounts_by_status.
        """
        query = query or GetAccountsInput()
        filters = []
        if query.status:
            filters.append(("status", "AccountStatus", _status_value(query.status)))

        items, next_keys = await self._scan(
            table_name=self.config.account_table_name,
            filters=filters,
            limit=query.limit,
            start_keys=query.start_keys,
        )
        return GetAccountsOutput(results=_unmarshal_all(Account, items), next_keys=next_keys)

    async def transition_account_status(
        self,
        account_id: str,
        prev_status: Union[AccountStatus, str],
        next_status: Union[AccountStatus, str],
    ) -> Account:
        """
        Move an account from prev_status to next_status in one conditional write.

        Raises StatusTransitionError if the stored status is not prev_status
        (including when the account does not exist), and ValidationError
        without touching the table if either status is not an AccountStatus.
        """
        context = {"account_id": account_id}
        prev_value = _coerce_status(AccountStatus, prev_status, context).value
        next_value = _coerce_status(AccountStatus, next_status, context).value

        try:
            async with self._client() as client:
                result = await client.update_item(
                    TableName=self.config.account_table_name,
                    Key={"Id": serialize_value(account_id)},
                    UpdateExpression="SET #status = :nextStatus, #lastModifiedOn = :lastModifiedOn",
                    ConditionExpression="#status = :prevStatus",
                    ExpressionAttributeNames={
                        "#status": "AccountStatus",
                        "#lastModifiedOn": "LastModifiedOn",
                    },
                    ExpressionAttributeValues={
                        ":prevStatus": serialize_value(prev_value),
                        ":nextStatus": serialize_value(next_value),
                        ":lastModifiedOn": serialize_value(self.now()),
                    },
                    ReturnValues="ALL_NEW",
                )
        except (ClientError, BotoCoreError) as exc:
            if _is_conditional_check_failure(exc):
                logger.warning(
                    "account_status_transition_conflict",
                    account_id=account_id,
                    prev_status=prev_value,
                    next_status=next_value,
                )
                raise StatusTransitionError(
                    f'unable to update account status from "{prev_value}" to "{next_value}" '
                    f'for account {account_id}: no account exists with Status="{prev_value}"',
                    record_id=account_id,
                    prev_status=prev_value,
                    next_status=next_value,
                ) from exc
            logger.error(
                "account_status_transition_failed",
                account_id=account_id,
                error=str(exc),
            )
            raise _backing_store_error(
                exc,
                f"Failed to transition account {account_id}",
                {"account_id": account_id, "prev_status": prev_value, "next_status": next_value},
            ) from exc

        logger.debug(
            "account_status_transitioned",
            account_id=account_id,
            prev_status=prev_value,
            next_status=next_value,
        )
        return unmarshal(Account, result["Attributes"])

    async def create_account(self, account: Account) -> Account:
        """Insert a new account. Raises ConflictError if the id is already taken."""
        now = self.now()
        record = account.model_copy(update={"created_on": now, "last_modified_on": now})
        await self._put_account(
            record,
            condition="attribute_not_exists(#id)",
            names={"#id": "Id"},
            values=None,
            conflict_message=f"Account {account.id} already exists",
        )
        return record

    async def put_account(
        self, account: Account, last_modified_on: Optional[int] = None
    ) -> Account:
        """
        Overwrite a full account record.

        When last_modified_on is given, the write only succeeds if the stored
        LastModifiedOn still equals it; otherwise ConflictError is raised.
        """
        record = account.model_copy(update={"last_modified_on": self.now()})
        if last_modified_on is None:
            await self._put_account(record)
        else:
            await self._put_account(
                record,
                condition="#lastModifiedOn = :lastModifiedOn",
                names={"#lastModifiedOn": "LastModifiedOn"},
                values={":lastModifiedOn": serialize_value(last_modified_on)},
                conflict_message=(
                    f"Account {account.id} was modified since {last_modified_on}"
                ),
            )
        return record

    async def _put_account(
        self,
        account: Account,
        condition: Optional[str] = None,
        names: Optional[Dict[str, str]] = None,
        values: Optional[Dict[str, Any]] = None,
        conflict_message: str = "",
    ) -> None:
        request: Dict[str, Any] = {
            "TableName": self.config.account_table_name,
            "Item": marshal(account),
        }
        if condition:
            request["ConditionExpression"] = condition
            request["ExpressionAttributeNames"] = names or {}
            if values:
                request["ExpressionAttributeValues"] = values

        try:
            async with self._client() as client:
                await client.put_item(**request)
        except (ClientError, BotoCoreError) as exc:
            if condition and _is_conditional_check_failure(exc):
                logger.warning("account_put_conflict", account_id=account.id)
                raise ConflictError(
                    conflict_message, details={"account_id": account.id}
                ) from exc
            logger.error("account_put_failed", account_id=account.id, error=str(exc))
            raise _backing_store_error(
                exc, f"Failed to put account {account.id}", {"account_id": account.id}
            ) from exc

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    async def get_lease_by_id(self, lease_id: str) -> Lease:
        """
        Look up a lease by its globally unique id.

        Exactly one match is expected: zero raises LeaseNotFoundError, more
        than one raises AmbiguousResultError.
        """
        items = await self._query_index(
            table_name=self.config.lease_table_name,
            index_name=LEASE_ID_INDEX,
            attribute="Id",
            value=lease_id,
            context={"lease_id": lease_id},
        )

        if len(items) < 1:
            raise LeaseNotFoundError(
                f"No Lease found with id: {lease_id}", details={"lease_id": lease_id}
            )
        if len(items) > 1:
            logger.error("lease_id_not_unique", lease_id=lease_id, matches=len(items))
            raise AmbiguousResultError(
                f"Found more than one Lease with id: {lease_id}",
                details={"lease_id": lease_id, "matches": len(items)},
            )

        return unmarshal(Lease, items[0])

    async def find_leases_by_principal(self, principal_id: str) -> List[Lease]:
        """
        All leases held by a principal; empty when there are none.

        An unreadable lease fails the whole query with RecordMappingError;
        details["key"] holds its AccountId and PrincipalId.
        """
        items = await self._query_index(
            table_name=self.config.lease_table_name,
            index_name=LEASE_PRINCIPAL_INDEX,
            attribute="PrincipalId",
            value=principal_id,
            context={"principal_id": principal_id},
        )
        return _unmarshal_all(Lease, items)

    async def upsert_lease(self, lease: Lease) -> Lease:
        """
        Create or update a lease keyed by (AccountId, PrincipalId).

        Every attribute except the key is written; the stored record is
        returned as DynamoDB sees it after the write.

        This is a full overwrite, not a patch. Unset timestamps go out as 0,
        so updating an existing lease without its created_on and
        status_modified_on clears the stored CreatedOn and
        LeaseStatusModifiedOn. Read the lease first and pass those values
        back in. Unset optional fields are removed from the item.
        """
        identity = f"{lease.principal_id}/{lease.account_id}"
        context = {"principal_id": lease.principal_id, "account_id": lease.account_id}

        if not lease.id:
            raise ValidationError(
                f"failed to create lease for {identity}: missing ID", details=context
            )
        if not lease.expires_on:
            raise ValidationError(
                f"failed to create lease for {identity}: missing ExpiresOn", details=context
            )

        record = lease.model_copy(update={"last_modified_on": self.now()})
        try:
            expression = build_update_expression(record, exclude_fields=Lease.KEY_FIELDS)
        except ConfigurationError as exc:
            raise ConfigurationError(
                f"Failed to update lease {identity}: {exc.message}",
                details={**exc.details, **context},
            ) from exc

        try:
            async with self._client() as client:
                result = await client.update_item(
                    TableName=self.config.lease_table_name,
                    Key={
                        "AccountId": serialize_value(lease.account_id),
                        "PrincipalId": serialize_value(lease.principal_id),
                    },
                    ReturnValues="ALL_NEW",
                    **expression.as_kwargs(),
                )
        except (ClientError, BotoCoreError) as exc:
            logger.error("lease_upsert_failed", error=str(exc), **context)
            raise _backing_store_error(
                exc, f"Failed to update lease {identity}", context
            ) from exc

        try:
            return unmarshal(Lease, result["Attributes"])
        except RecordMappingError as exc:
            logger.error("lease_upsert_unmarshal_failed", error=exc.message, **context)
            raise RecordMappingError(
                f"Failed to update lease {identity}: {exc.message}",
                details={**exc.details, **context},
            ) from exc

    async def transition_lease_status(
        self,
        account_id: str,
        principal_id: str,
        prev_status: Union[LeaseStatus, str],
        next_status: Union[LeaseStatus, str],
        reason: Union[LeaseStatusReason, str],
    ) -> Lease:
        """
        Move a lease from prev_status to next_status in one conditional write.

        For example, to lock a lease while its account is reset:
            await store.transition_lease_status(acct, principal, "Active", "ResetLock", "Reset")
        and to unlock it again:
            await store.transition_lease_status(acct, principal, "ResetLock", "Active", "Active")

        Both statuses must be LeaseStatus values. The reason is free text
        (usually a LeaseStatusReason) but may not be blank. Bad input raises
        ValidationError before any request is sent.
        """
        context = {"account_id": account_id, "principal_id": principal_id}
        prev_value = _coerce_status(LeaseStatus, prev_status, context).value
        next_value = _coerce_status(LeaseStatus, next_status, context).value
        reason_value = _status_value(reason) if reason is not None else ""
        if not reason_value.strip():
            raise ValidationError(
                f"missing status reason for lease {account_id}/{principal_id}",
                details=context,
            )
        now = self.now()

        try:
            async with self._client() as client:
                result = await client.update_item(
                    TableName=self.config.lease_table_name,
                    Key={
                        "AccountId": serialize_value(account_id),
                        "PrincipalId": serialize_value(principal_id),
                    },
                    UpdateExpression=(
                        "SET #status = :nextStatus, "
                        "#statusReason = :nextStatusReason, "
                        "#lastModifiedOn = :lastModifiedOn, "
                        "#statusModifiedOn = :statusModifiedOn"
                    ),
                    ConditionExpression="#status = :prevStatus",
                    ExpressionAttributeNames={
                        "#status": "LeaseStatus",
                        "#statusReason": "LeaseStatusReason",
                        "#lastModifiedOn": "LastModifiedOn",
                        "#statusModifiedOn": "LeaseStatusModifiedOn",
                    },
                    ExpressionAttributeValues={
                        ":prevStatus": serialize_value(prev_value),
                        ":nextStatus": serialize_value(next_value),
                        ":nextStatusReason": serialize_value(reason_value),
                        ":lastModifiedOn": serialize_value(now),
                        ":statusModifiedOn": serialize_value(now),
                    },
                    ReturnValues="ALL_NEW",
                )
        except (ClientError, BotoCoreError) as exc:
            if _is_conditional_check_failure(exc):
                logger.warning(
                    "lease_status_transition_conflict",
                    account_id=account_id,
                    principal_id=principal_id,
                    prev_status=prev_value,
                    next_status=next_value,
                )
                raise StatusTransitionError(
                    f'unable to update lease status from "{prev_value}" to "{next_value}" '
                    f"for {account_id}/{principal_id}: "
                    f'no lease exists with Status="{prev_value}"',
                    record_id=f"{account_id}/{principal_id}",
                    prev_status=prev_value,
                    next_status=next_value,
                    details={"account_id": account_id, "principal_id": principal_id},
                ) from exc
            logger.error(
                "lease_status_transition_failed",
                account_id=account_id,
                principal_id=principal_id,
                error=str(exc),
            )
            raise _backing_store_error(
                exc,
                f"Failed to transition lease {account_id}/{principal_id}",
                {"account_id": account_id, "principal_id": principal_id},
            ) from exc

        logger.debug(
            "lease_status_transitioned",
            account_id=account_id,
            principal_id=principal_id,
            prev_status=prev_value,
            next_status=next_value,
            reason=reason_value,
        )
        return unmarshal(Lease, result["Attributes"])

    async def get_leases(self, query: GetLeasesInput) -> GetLeasesOutput:
        """
        One page of a filtered lease scan.

        Pass the returned next_keys back as start_keys to continue; an empty
        next_keys means the scan is complete. DynamoDB applies Limit before the
        filter, so a page may hold fewer than `limit` results. An unreadable
        lease raises RecordMappingError carrying its key.
        """
        filters = [
            (ref, attribute, value)
            for ref, attribute, value in (
                ("principalId", "PrincipalId", query.principal_id),
                ("accountId", "AccountId", query.account_id),
                ("status", "LeaseStatus", _status_value(query.status) if query.status else None),
            )
            if value
        ]

        items, next_keys = await self._scan(
            table_name=self.config.lease_table_name,
            filters=filters,
            limit=query.limit,
            start_keys=query.start_keys,
        )
        return GetLeasesOutput(results=_unmarshal_all(Lease, items), next_keys=next_keys)

    # ------------------------------------------------------------------

    async def _scan(
        self,
        table_name: str,
        filters: List[Tuple[str, str, str]],
        limit: Optional[int],
        start_keys: Dict[str, str],
    ) -> Tuple[List[Dict[str, Any]], Dict[str, str]]:
        """
        One page of a base-table scan with equality filters (ref, attribute, value)
        joined by AND. Returns raw items and the plain-string next_keys.
        """
        request: Dict[str, Any] = {
            "TableName": table_name,
            "ConsistentRead": self.config.consistent_read,
        }
        if filters:
            request["FilterExpression"] = " AND ".join(
                f"#{ref} = :{ref}" for ref, _, _ in filters
            )
            request["ExpressionAttributeNames"] = {
                f"#{ref}": attribute for ref, attribute, _ in filters
            }
            request["ExpressionAttributeValues"] = {
                f":{ref}": serialize_value(value) for ref, _, value in filters
            }
        if limit:
            request["Limit"] = limit
        if start_keys:
            request["ExclusiveStartKey"] = {
                name: serialize_value(value) for name, value in start_keys.items()
            }

        try:
            async with self._client() as client:
                result = await client.scan(**request)
        except (ClientError, BotoCoreError) as exc:
            logger.error("table_scan_failed", table=table_name, error=str(exc))
            raise _backing_store_error(exc, f"Failed to scan {table_name}") from exc

        next_keys = {
            name: str(next(iter(value.values())))
            for name, value in (result.get("LastEvaluatedKey") or {}).items()
        }
        return list(result.get("Items", [])), next_keys

    async def _query_index(
        self,
        table_name: str,
        index_name: str,
        attribute: str,
        value: str,
        context: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Equality query against a secondary index; returns raw items."""
        try:
            async with self._client() as client:
                result = await client.query(
                    TableName=table_name,
                    IndexName=index_name,
                    KeyConditionExpression="#key = :value",
                    ExpressionAttributeNames={"#key": attribute},
                    ExpressionAttributeValues={":value": serialize_value(value)},
                )
        except (ClientError, BotoCoreError) as exc:
            logger.error(
                "index_query_failed", table=table_name, index=index_name, error=str(exc), **context
            )
            raise _backing_store_error(
                exc, f"Failed to query {table_name}.{index_name}", context
            ) from exc

        if result.get("LastEvaluatedKey"):
            # Single round trip per call; get_leases and get_accounts paginate.
            logger.warning("index_query_truncated", table=table_name, index=index_name, **context)
        return list(result.get("Items", []))

"""
In-memory stand-in for the async DynamoDB client.

Understands the subset of expression syntax the store emits:
`SET a = :x, b = :y REMOVE c`, equality conditions joined by AND, and
`attribute_not_exists(a)`. Each call runs its check-and-write without
yielding, which is what makes DynamoDB's conditional writes atomic.
"""
import asyncio
import copy
import re
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

ACCOUNT_TABLE = "Accounts"
LEASE_TABLE = "Leases"

KEY_SCHEMAS = {
    ACCOUNT_TABLE: ("Id",),
    LEASE_TABLE: ("AccountId", "PrincipalId"),
}
INDEXES = {
    (ACCOUNT_TABLE, "AccountStatus"): "AccountStatus",
    (LEASE_TABLE, "LeaseId"): "Id",
    (LEASE_TABLE, "PrincipalId"): "PrincipalId",
}


def client_error(code: str = "AccessDenied", operation: str = "Op") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class AsyncContext:
    def __init__(self, obj):
        self._obj = obj

    async def __aenter__(self):
        return self._obj

    async def __aexit__(self, *args):
        return None


class FakeSession:
    """Mimics aioboto3.Session.client(...) as an async context manager."""

    def __init__(self, client: "FakeDynamoDB"):
        self._client = client
        self.client_kwargs: List[Dict[str, Any]] = []

    def client(self, **kwargs):
        self.client_kwargs.append(kwargs)
        return AsyncContext(self._client)


def _resolve(token: str, names: Dict[str, str]) -> str:
    token = token.strip()
    return names.get(token, token)


class FakeDynamoDB:
    def __init__(self):
        self.tables: Dict[str, Dict[Tuple, Dict[str, Any]]] = {
            name: {} for name in KEY_SCHEMAS
        }
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        # operation name -> exception raised on the next call
        self.failures: Dict[str, Exception] = {}

    # -- helpers -------------------------------------------------------

    def seed(self, table: str, item: Dict[str, Any]) -> None:
        self.tables[table][self._key_of(table, item)] = copy.deepcopy(item)

    def items(self, table: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(i) for i in self.tables[table].values()]

    def _key_of(self, table: str, item: Dict[str, Any]) -> Tuple:
        return tuple(item[name]["S"] for name in KEY_SCHEMAS[table])

    def _record(self, operation: str, kwargs: Dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        if operation in self.failures:
            raise self.failures.pop(operation)

    def _condition_holds(
        self,
        expression: Optional[str],
        item: Optional[Dict[str, Any]],
        names: Dict[str, str],
        values: Dict[str, Any],
    ) -> bool:
        if not expression:
            return True
        for clause in expression.split(" AND "):
            clause = clause.strip()
            match = re.fullmatch(r"attribute_not_exists\((.+)\)", clause)
            if match:
                if item is not None and _resolve(match.group(1), names) in item:
                    return False
                continue
            left, right = clause.split("=")
            attribute = _resolve(left, names)
            if item is None or item.get(attribute) != values[right.strip()]:
                return False
        return True

    def _apply_update(
        self,
        item: Dict[str, Any],
        expression: str,
        names: Dict[str, str],
        values: Dict[str, Any],
    ) -> None:
        for action, body in re.findall(r"(SET|REMOVE)\s+(.*?)(?=\s+(?:SET|REMOVE)\s|$)", expression):
            for clause in body.split(","):
                if action == "SET":
                    left, right = clause.split("=")
                    item[_resolve(left, names)] = copy.deepcopy(values[right.strip()])
                else:
                    item.pop(_resolve(clause, names), None)

    # -- client API ----------------------------------------------------

    async def get_item(self, **kwargs):
        await asyncio.sleep(0)
        self._record("get_item", kwargs)
        table = kwargs["TableName"]
        key = tuple(kwargs["Key"][name]["S"] for name in KEY_SCHEMAS[table])
        item = self.tables[table].get(key)
        return {"Item": copy.deepcopy(item)} if item else {}

    async def query(self, **kwargs):
        await asyncio.sleep(0)
        self._record("query", kwargs)
        table = kwargs["TableName"]
        attribute = INDEXES[(table, kwargs["IndexName"])]
        names = kwargs.get("ExpressionAttributeNames", {})
        left, right = kwargs["KeyConditionExpression"].split("=")
        assert _resolve(left, names) == attribute
        wanted = kwargs["ExpressionAttributeValues"][right.strip()]
        matches = [
            copy.deepcopy(item)
            for item in self.tables[table].values()
            if item.get(attribute) == wanted
        ]
        return {"Items": matches, "Count": len(matches)}

    async def update_item(self, **kwargs):
        await asyncio.sleep(0)
        self._record("update_item", kwargs)
        table = kwargs["TableName"]
        key = tuple(kwargs["Key"][name]["S"] for name in KEY_SCHEMAS[table])
        names = kwargs.get("ExpressionAttributeNames", {})
        values = kwargs.get("ExpressionAttributeValues", {})
        current = self.tables[table].get(key)

        if not self._condition_holds(kwargs.get("ConditionExpression"), current, names, values):
            raise client_error("ConditionalCheckFailedException", "UpdateItem")

        item = copy.deepcopy(current) if current else copy.deepcopy(kwargs["Key"])
        self._apply_update(item, kwargs["UpdateExpression"], names, values)
        self.tables[table][key] = item
        if kwargs.get("ReturnValues") == "ALL_NEW":
            return {"Attributes": copy.deepcopy(item)}
        return {}

    async def put_item(self, **kwargs):
        await asyncio.sleep(0)
        self._record("put_item", kwargs)
        table = kwargs["TableName"]
        item = kwargs["Item"]
        key = self._key_of(table, item)
        current = self.tables[table].get(key)
        if not self._condition_holds(
            kwargs.get("ConditionExpression"),
            current,
            kwargs.get("ExpressionAttributeNames", {}),
            kwargs.get("ExpressionAttributeValues", {}),
        ):
            raise client_error("ConditionalCheckFailedException", "PutItem")
        self.tables[table][key] = copy.deepcopy(item)
        return {}

    async def scan(self, **kwargs):
        await asyncio.sleep(0)
        self._record("scan", kwargs)
        table = kwargs["TableName"]
        ordered = sorted(self.tables[table].items())
        start = kwargs.get("ExclusiveStartKey")
        if start:
            start_key = self._key_of(table, start)
            ordered = [(k, v) for k, v in ordered if k > start_key]

        limit = kwargs.get("Limit")
        evaluated = ordered[:limit] if limit else ordered
        names = kwargs.get("ExpressionAttributeNames", {})
        values = kwargs.get("ExpressionAttributeValues", {})
        results = [
            copy.deepcopy(item)
            for _, item in evaluated
            if self._condition_holds(kwargs.get("FilterExpression"), item, names, values)
        ]

        response: Dict[str, Any] = {"Items": results, "Count": len(results)}
        if limit and len(ordered) > limit:
            last = evaluated[-1][1]
            response["LastEvaluatedKey"] = {
                name: copy.deepcopy(last[name]) for name in KEY_SCHEMAS[table]
            }
        return response

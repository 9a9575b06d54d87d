"""
Translation between DynamoDB wire items and pool records.

The low-level client speaks typed attribute values ({"S": "..."}); records
speak plain python. Floats become Decimal on the way in (DynamoDB rejects
float) and Decimals collapse back to int/float on the way out.

DynamoDB keeps a single number type, so 1.0 and 1 are stored identically.
Anything integral reads back as int: Metadata={"x": 1.0} returns as
{"x": 1}. The values compare equal; callers that need a float must convert it.
"""
from decimal import Decimal
from typing import Any, Dict, Mapping, Type, TypeVar

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from pydantic import ValidationError as PydanticValidationError

from sandbox_pool.core.exceptions import RecordMappingError
from sandbox_pool.models.base import DynamoRecord

RecordT = TypeVar("RecordT", bound=DynamoRecord)

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_dynamo(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_from_dynamo(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return [_from_dynamo(v) for v in sorted(value, key=str)]
    return value


def serialize_value(value: Any) -> Dict[str, Any]:
    return _serializer.serialize(_to_dynamo(value))


def serialize_item(item: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    return {name: serialize_value(value) for name, value in item.items()}


def deserialize_item(item: Mapping[str, Any]) -> Dict[str, Any]:
    return {name: _from_dynamo(_deserializer.deserialize(value)) for name, value in item.items()}


def unmarshal(record_type: Type[RecordT], item: Mapping[str, Any]) -> RecordT:
    """Build a record from a wire item, raising RecordMappingError on bad data."""
    try:
        return record_type.model_validate(deserialize_item(item))
    except (PydanticValidationError, TypeError) as exc:
        raise RecordMappingError(
            f"Failed to unmarshal {record_type.__name__}: {exc}",
            details={"record_type": record_type.__name__},
        ) from exc


def marshal(record: DynamoRecord) -> Dict[str, Dict[str, Any]]:
    return serialize_item(record.to_item())

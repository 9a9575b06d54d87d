"""
Partial-update expressions for DynamoDB UpdateItem.

Field names are resolved through the record's declared attribute names (its
pydantic aliases), so an update targets exactly the attributes that
marshalling writes and unmarshalling reads.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sandbox_pool.core.exceptions import ConfigurationError
from sandbox_pool.db.serialization import serialize_value
from sandbox_pool.models.base import DynamoRecord


@dataclass
class UpdateExpression:
    update_expression: str
    expression_attribute_names: Dict[str, str] = field(default_factory=dict)
    expression_attribute_values: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def as_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for client.update_item()."""
        kwargs: Dict[str, Any] = {
            "UpdateExpression": self.update_expression,
            "ExpressionAttributeNames": self.expression_attribute_names,
        }
        # DynamoDB rejects an empty ExpressionAttributeValues map
        if self.expression_attribute_values:
            kwargs["ExpressionAttributeValues"] = self.expression_attribute_values
        return kwargs


def select_fields(
    record_type: type[DynamoRecord],
    exclude_fields: Optional[Iterable[str]] = None,
    include_fields: Optional[Iterable[str]] = None,
) -> List[str]:
    """Resolve include/exclude lists to the ordered list of fields to write."""
    excluded = set(exclude_fields or ())
    included = set(include_fields or ())

    if excluded and included:
        raise ConfigurationError(
            "unable to build DynamoDB update expression: "
            "request may specify include_fields or exclude_fields, but not both"
        )

    known = record_type.attribute_names()
    unknown = (excluded | included) - set(known)
    if unknown:
        raise ConfigurationError(
            f"unable to build DynamoDB update expression: "
            f"unknown fields for {record_type.__name__}: {', '.join(sorted(unknown))}",
            details={"unknown_fields": sorted(unknown)},
        )

    if included:
        return [name for name in known if name in included]
    return [name for name in known if name not in excluded]


def build_update_expression(
    record: DynamoRecord,
    exclude_fields: Optional[Iterable[str]] = None,
    include_fields: Optional[Iterable[str]] = None,
) -> UpdateExpression:
    """
    Build a SET/REMOVE update expression covering the selected fields of a record.

    Unset optional fields (None) are removed rather than stored as NULL.
    """
    names = type(record).attribute_names()
    selected = select_fields(type(record), exclude_fields, include_fields)
    if not selected:
        raise ConfigurationError(
            "unable to build DynamoDB update expression: no fields selected"
        )

    attribute_names: Dict[str, str] = {}
    attribute_values: Dict[str, Dict[str, Any]] = {}
    set_clauses: List[str] = []
    remove_clauses: List[str] = []

    dumped = record.model_dump(mode="json")
    for index, field_name in enumerate(selected):
        name_ref = f"#n{index}"
        attribute_names[name_ref] = names[field_name]
        value = dumped[field_name]
        if value is None:
            remove_clauses.append(name_ref)
            continue
        value_ref = f":v{index}"
        attribute_values[value_ref] = serialize_value(value)
        set_clauses.append(f"{name_ref} = {value_ref}")

    parts = []
    if set_clauses:
        parts.append("SET " + ", ".join(set_clauses))
    if remove_clauses:
        parts.append("REMOVE " + ", ".join(remove_clauses))

    return UpdateExpression(
        update_expression=" ".join(parts),
        expression_attribute_names=attribute_names,
        expression_attribute_values=attribute_values,
    )

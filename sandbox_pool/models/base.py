from typing import Any, ClassVar, Dict

from pydantic import BaseModel, ConfigDict


class DynamoRecord(BaseModel):
    """
    Base class for records persisted in DynamoDB.

    Every field declares its stored attribute name as its alias, so the same
    names are used for marshalling, unmarshalling and update expressions.
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)

    # Python field names that make up the table's primary key
    KEY_FIELDS: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def attribute_names(cls) -> Dict[str, str]:
        """Field name -> stored attribute name."""
        return {
            name: field.alias or name
            for name, field in cls.model_fields.items()
        }

    def to_item(self) -> Dict[str, Any]:
        """Plain-python item keyed by stored attribute names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

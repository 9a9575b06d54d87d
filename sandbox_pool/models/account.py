from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field

from sandbox_pool.models.base import DynamoRecord


class AccountStatus(str, Enum):
    NOT_READY = "NotReady"
    READY = "Ready"
    LEASED = "Leased"


class Account(DynamoRecord):
    """A pooled cloud account that can be leased to one principal at a time."""

    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("id",)

    id: str = Field(alias="Id")
    status: AccountStatus = Field(default=AccountStatus.NOT_READY, alias="AccountStatus")
    admin_role_arn: Optional[str] = Field(default=None, alias="AdminRoleArn")
    principal_role_arn: Optional[str] = Field(default=None, alias="PrincipalRoleArn")
    principal_policy_hash: Optional[str] = Field(default=None, alias="PrincipalPolicyHash")
    metadata: Dict[str, Any] = Field(default_factory=dict, alias="Metadata")
    created_on: int = Field(default=0, alias="CreatedOn")
    last_modified_on: int = Field(default=0, alias="LastModifiedOn")


class GetAccountsInput(BaseModel):
    """Filtering criteria for a paginated account scan."""

    status: Optional[AccountStatus] = None
    limit: Optional[int] = Field(default=None, ge=1)
    start_keys: Dict[str, str] = Field(default_factory=dict)


class GetAccountsOutput(BaseModel):
    results: List[Account] = Field(default_factory=list)
    # Empty when there are no further pages
    next_keys: Dict[str, str] = Field(default_factory=dict)

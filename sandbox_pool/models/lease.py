from enum import Enum
from typing import ClassVar, Dict, List, Optional, Any

from pydantic import BaseModel, Field

from sandbox_pool.models.base import DynamoRecord


class LeaseStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    # Held while the account behind the lease is being reset
    RESET_LOCK = "ResetLock"


class LeaseStatusReason(str, Enum):
    """Well-known audit reasons. The stored reason is free-form text."""

    ACTIVE = "Active"
    EXPIRED = "Expired"
    OVER_BUDGET = "OverBudget"
    DESTROYED = "Destroyed"
    ROLLED_BACK = "Rolledback"
    RESET = "Reset"


class Lease(DynamoRecord):
    """A time-bounded grant of an account to a principal."""

    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("account_id", "principal_id")

    account_id: str = Field(alias="AccountId")
    principal_id: str = Field(alias="PrincipalId")
    # Globally unique handle, indexed separately from the composite key
    id: str = Field(default="", alias="Id")
    status: Optional[LeaseStatus] = Field(default=None, alias="LeaseStatus")
    status_reason: Optional[str] = Field(default=None, alias="LeaseStatusReason")
    status_modified_on: int = Field(default=0, alias="LeaseStatusModifiedOn")
    created_on: int = Field(default=0, alias="CreatedOn")
    last_modified_on: int = Field(default=0, alias="LastModifiedOn")
    # Must be non-zero before the lease can be written
    expires_on: int = Field(default=0, alias="ExpiresOn")
    budget_amount: Optional[float] = Field(default=None, alias="BudgetAmount")
    budget_currency: Optional[str] = Field(default=None, alias="BudgetCurrency")
    budget_notification_emails: List[str] = Field(default_factory=list, alias="BudgetNotificationEmails")
    metadata: Dict[str, Any] = Field(default_factory=dict, alias="Metadata")


class GetLeasesInput(BaseModel):
    """Filtering criteria for a paginated lease scan."""

    principal_id: Optional[str] = None
    account_id: Optional[str] = None
    status: Optional[LeaseStatus] = None
    limit: Optional[int] = Field(default=None, ge=1)
    start_keys: Dict[str, str] = Field(default_factory=dict)


class GetLeasesOutput(BaseModel):
    results: List[Lease] = Field(default_factory=list)
    # Empty when there are no further pages
    next_keys: Dict[str, str] = Field(default_factory=dict)

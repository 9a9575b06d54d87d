from sandbox_pool.models.account import (
    Account,
    AccountStatus,
    GetAccountsInput,
    GetAccountsOutput,
)
from sandbox_pool.models.lease import (
    GetLeasesInput,
    GetLeasesOutput,
    Lease,
    LeaseStatus,
    LeaseStatusReason,
)

__all__ = [
    "Account",
    "AccountStatus",
    "GetAccountsInput",
    "GetAccountsOutput",
    "GetLeasesInput",
    "GetLeasesOutput",
    "Lease",
    "LeaseStatus",
    "LeaseStatusReason",
]

from typing import Any, Optional

import aioboto3
from botocore.config import Config as BotoConfig

from sandbox_pool.core.config import StoreConfig

# One attempt per call: retry policy belongs to the caller.
DEFAULT_BOTO_CONFIG = BotoConfig(
    read_timeout=30, connect_timeout=10, retries={"total_max_attempts": 1, "mode": "standard"}
)


def get_boto_session() -> aioboto3.Session:
    """Returns a centralized aioboto3 session."""
    return aioboto3.Session()


def dynamodb_client(
    session: Any,
    config: StoreConfig,
    boto_config: Optional[BotoConfig] = None,
) -> Any:
    """
    Returns an async DynamoDB client context manager for the configured region.
    Use as `async with dynamodb_client(session, config) as client:`.
    """
    kwargs: dict[str, Any] = {
        "service_name": "dynamodb",
        "region_name": config.region,
        "config": boto_config or DEFAULT_BOTO_CONFIG,
    }
    if config.endpoint_url:
        kwargs["endpoint_url"] = config.endpoint_url
    return session.client(**kwargs)

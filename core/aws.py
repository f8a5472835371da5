"""boto3 client construction and the async wrapper every AWS call goes through."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.config import Config

from core.config import Settings
from core.errors import from_aws_error

logger = logging.getLogger(__name__)


@dataclass
class AwsClients:
    """The managed services the core talks to."""
    scheduler: Any
    sts: Any
    stepfunctions: Any
    lambda_: Any
    sns: Any
    events: Any

    @classmethod
    def from_settings(cls, settings: Settings) -> AwsClients:
        # botocore retries are disabled; RetryPolicy does the retrying.
        config = Config(
            region_name=settings.aws_region,
            connect_timeout=settings.call_timeout_seconds,
            read_timeout=settings.call_timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        return cls(
            scheduler=boto3.client("scheduler", config=config),
            sts=boto3.client("sts", config=config),
            stepfunctions=boto3.client("stepfunctions", config=config),
            lambda_=boto3.client("lambda", config=config),
            sns=boto3.client("sns", config=config),
            events=boto3.client("events", config=config),
        )


async def call_aws(
    method: Callable[..., dict],
    operation: str,
    timeout: float,
    **kwargs: Any,
) -> dict:
    """Run a blocking boto3 call off the event loop with a hard timeout.

    Any botocore failure (or the timeout) comes back as a ServiceError.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(functools.partial(method, **kwargs)),
            timeout=timeout,
        )
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        err = from_aws_error(exc, operation)
        logger.debug("AWS call failed", extra={"operation": operation, "code": err.code})
        raise err from exc

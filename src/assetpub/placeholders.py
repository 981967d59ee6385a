"""Destination resolution: placeholder substitution and client options."""

from __future__ import annotations

from typing import Any, Dict, Set, TypeVar

import structlog

from assetpub.aws import Account, AwsClient, ClientOptions
from assetpub.manifest import AwsDestination

logger = structlog.get_logger()

PARTITION = "${AWS::Partition}"
ACCOUNT_ID = "${AWS::AccountId}"
REGION = "${AWS::Region}"

PLACEHOLDERS = (PARTITION, ACCOUNT_ID, REGION)

D = TypeVar("D", bound=AwsDestination)


def find_placeholders(value: Any) -> Set[str]:
    """Return the placeholder tokens used anywhere inside ``value``."""
    if isinstance(value, str):
        return {p for p in PLACEHOLDERS if p in value}
    if isinstance(value, dict):
        found: Set[str] = set()
        for item in value.values():
            found |= find_placeholders(item)
        return found
    if isinstance(value, (list, tuple)):
        found = set()
        for item in value:
            found |= find_placeholders(item)
        return found
    return set()


def _substitute(value: Any, replacements: Dict[str, str]) -> Any:
    if isinstance(value, str):
        for token, replacement in replacements.items():
            value = value.replace(token, replacement)
        return value
    if isinstance(value, dict):
        return {k: _substitute(v, replacements) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(v, replacements) for v in value]
    return value


def destination_to_client_options(destination: AwsDestination) -> ClientOptions:
    return ClientOptions(
        region=destination.region,
        assume_role_arn=destination.assume_role_arn,
        assume_role_external_id=destination.assume_role_external_id,
        assume_role_additional_options=destination.assume_role_additional_options,
    )


async def replace_aws_placeholders(destination: D, aws: AwsClient) -> D:
    """Substitute partition, account id and region tokens in a destination.

    Concrete destinations are returned as-is without touching credentials.
    Otherwise exactly one identity lookup is made, against the assumed role
    when the destination names a concrete one and against the current
    credentials when it does not.
    """
    data = destination.model_dump()
    needed = find_placeholders(data)
    if not needed:
        return destination

    replacements: Dict[str, str] = {}
    if REGION in needed:
        replacements[REGION] = destination.region or await aws.discover_default_region()
    if ACCOUNT_ID in needed or PARTITION in needed:
        account = await _discover_account(destination, aws)
        replacements[ACCOUNT_ID] = account.account_id
        replacements[PARTITION] = account.partition

    logger.debug("destination_placeholders_resolved", placeholders=sorted(needed))
    return type(destination).model_validate(_substitute(data, replacements))


async def _discover_account(destination: AwsDestination, aws: AwsClient) -> Account:
    role_arn = destination.assume_role_arn
    if role_arn and not find_placeholders(role_arn):
        region = destination.region
        if region and find_placeholders(region):
            region = None
        options = ClientOptions(
            region=region,
            assume_role_arn=role_arn,
            assume_role_external_id=destination.assume_role_external_id,
            assume_role_additional_options=destination.assume_role_additional_options,
        )
        return await aws.discover_target_account(options)
    return await aws.discover_current_account()

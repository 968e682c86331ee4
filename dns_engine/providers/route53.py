"""AWS Route53 DNS provider (boto3)."""

import logging
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from dns_engine.core.errors import ProviderError
from dns_engine.providers.base import DnsProvider, ProviderRecordSet, is_managed

logger = logging.getLogger(__name__)


def _decode_name(name: str) -> str:
    # Route53 returns "*" as an octal escape
    return name.replace("\\052", "*").rstrip(".").lower()


def _quote_txt(value: str) -> str:
    """Route53 wants TXT data in double quotes, split into 255-byte strings."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    chunks = [escaped[i:i + 255] for i in range(0, len(escaped), 255)] or [""]
    return " ".join(f'"{chunk}"' for chunk in chunks)


def _unquote_txt(value: str) -> str:
    value = value.strip()
    if not value.startswith('"'):
        return value

    parts = []
    current = []
    in_quotes = False
    escaped = False
    for ch in value:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == '"':
            if in_quotes:
                parts.append("".join(current))
                current = []
            in_quotes = not in_quotes
        elif in_quotes:
            current.append(ch)
    return "".join(parts)


class Route53DnsProvider(DnsProvider):
    """
    Route53 hosted zone.

    Record sets are written whole: create and update send the full value
    list, delete sends the set exactly as Route53 currently serves it.
    """

    def __init__(self, hosted_zone_id: str, region: Optional[str] = None, client=None, ttl: int = 60):
        if not hosted_zone_id:
            raise ValueError("hosted_zone_id is required for Route53")

        self._zone_id = hosted_zone_id
        self._ttl = ttl
        self._client = client or boto3.client("route53", region_name=region)

    # -------------------------
    # LIST
    # -------------------------

    def list_managed_records(self, zone: str) -> List[ProviderRecordSet]:
        try:
            paginator = self._client.get_paginator("list_resource_record_sets")
            pages = paginator.paginate(HostedZoneId=self._zone_id)

            results = []
            for page in pages:
                for rrset in page.get("ResourceRecordSets", []):
                    record_set = self._to_record_set(rrset)
                    if record_set and is_managed(record_set.name, record_set.type, zone):
                        results.append(record_set)
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"Route53 list_resource_record_sets failed: {e}") from e

        logger.debug(f"[route53] {len(results)} managed record sets in {zone}")
        return results

    def _to_record_set(self, rrset: Dict) -> Optional[ProviderRecordSet]:
        # Alias and routing-policy records are operator territory
        if "AliasTarget" in rrset or "SetIdentifier" in rrset:
            return None

        record_type = rrset["Type"]
        values = [rr["Value"] for rr in rrset.get("ResourceRecords", [])]
        if record_type == "TXT":
            values = [_unquote_txt(v) for v in values]

        return ProviderRecordSet.build(
            _decode_name(rrset["Name"]),
            record_type,
            values,
            ttl=rrset.get("TTL", self._ttl),
        )

    # -------------------------
    # MUTATIONS
    # -------------------------

    def create_record(self, record_set: ProviderRecordSet) -> None:
        self._change("CREATE", record_set)

    def update_record(self, record_set: ProviderRecordSet) -> None:
        self._change("UPSERT", record_set)

    def delete_record(self, record_set: ProviderRecordSet) -> None:
        self._change("DELETE", record_set)

    def _change(self, action: str, record_set: ProviderRecordSet) -> None:
        values = record_set.values
        if record_set.type == "TXT":
            values = tuple(_quote_txt(v) for v in values)

        change = {
            "Action": action,
            "ResourceRecordSet": {
                "Name": f"{record_set.name}.",
                "Type": record_set.type,
                "TTL": record_set.ttl or self._ttl,
                "ResourceRecords": [{"Value": v} for v in values],
            },
        }

        try:
            self._client.change_resource_record_sets(
                HostedZoneId=self._zone_id,
                ChangeBatch={
                    "Comment": f"dns-engine {action.lower()} {record_set.name}",
                    "Changes": [change],
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"Route53 {action} {record_set.name} {record_set.type} failed: {e}") from e

        logger.info(f"[route53] {action} {record_set.name} {record_set.type} ({len(values)} values)")

"""
Snapshot State Reader

Answers CloudStateReader queries from a recorded state document (YAML or
JSON). Used for offline verification of captured environments and by the
test suite.

Document layout::

    caller: {arn: ..., account: ...}
    secrets:
      <secret-id>: {arn, rotation_enabled, policy, readable}
    instances:
      <instance-id>: {instance_profile_arn, security_group_ids, vpc_id}
    instance_profiles:
      <profile-name>: [<role-name>, ...]
    databases:
      <db-id>: {engine, port, publicly_accessible, security_group_ids, subnet_group_name}
    security_groups:
      <group-id>: [{from_port, to_port, source_group_ids, ipv4_ranges, ipv6_ranges}]
    subnet_groups:
      <name>: [<subnet-id>, ...]
    subnets:
      <subnet-id>: {vpc_id}
    route_tables:
      <rtb-id>: {vpc_id, main, subnet_ids, gateway_ids}
    denied: [<operation>, ...]        # raise AccessDenied for these
    delays: {<operation>: seconds}    # simulate slow endpoints
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..main import GateExecutionError
from .base import (
    CallerIdentity,
    CloudQueryError,
    CloudStateReader,
    CredentialsUnavailableError,
    DatabaseFacts,
    IngressRule,
    InstanceFacts,
    RouteTable,
    SecretMetadata,
)

logger = logging.getLogger(__name__)


class SnapshotError(GateExecutionError):
    """Snapshot file missing or not a valid state document"""
    pass


class SnapshotStateReader(CloudStateReader):
    """In-memory reader over a recorded state document"""

    name = "snapshot"

    def __init__(self, state: Optional[Dict[str, Any]] = None):
        self.state: Dict[str, Any] = state or {}
        self.calls: List[str] = []

    @classmethod
    def from_file(cls, path: str) -> "SnapshotStateReader":
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise SnapshotError(f"cannot read snapshot {path}: {e}") from e

        try:
            data = json.loads(text) if path.endswith(".json") else yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as e:
            raise SnapshotError(f"cannot parse snapshot {path}: {e}") from e

        if not isinstance(data, dict):
            raise SnapshotError(f"snapshot {path} must contain a mapping")
        logger.info(f"Loaded snapshot state from {path}")
        return cls(data)

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        delay = (self.state.get("delays") or {}).get(operation)
        if delay:
            time.sleep(float(delay))
        if operation in (self.state.get("denied") or []):
            raise CloudQueryError(operation, "AccessDenied", "denied by snapshot")

    def _section(self, name: str) -> Dict[str, Any]:
        return self.state.get(name) or {}

    # =========================================================================
    # Identity
    # =========================================================================

    def get_caller_identity(self) -> CallerIdentity:
        self._enter("sts:GetCallerIdentity")
        caller = self.state.get("caller")
        if not caller:
            raise CredentialsUnavailableError("snapshot has no caller identity")
        return CallerIdentity(
            arn=caller["arn"],
            account=str(caller.get("account", "")),
            user_id=str(caller.get("user_id", "")),
        )

    def get_instance_profile_roles(self, profile_name: str) -> List[str]:
        self._enter("iam:GetInstanceProfile")
        return list(self._section("instance_profiles").get(profile_name) or [])

    # =========================================================================
    # Secrets
    # =========================================================================

    def _secret(self, secret_id: str) -> Optional[Dict[str, Any]]:
        secrets = self._section("secrets")
        if secret_id in secrets:
            return secrets[secret_id] or {}
        for name, data in secrets.items():
            if data and data.get("arn") == secret_id:
                return data
        return None

    def describe_secret(self, secret_id: str) -> Optional[SecretMetadata]:
        self._enter("secretsmanager:DescribeSecret")
        data = self._secret(secret_id)
        if data is None:
            return None
        return SecretMetadata(
            name=data.get("name", secret_id),
            arn=data.get("arn", ""),
            rotation_enabled=data.get("rotation_enabled"),
        )

    def get_secret_policy(self, secret_id: str) -> Optional[str]:
        self._enter("secretsmanager:GetResourcePolicy")
        data = self._secret(secret_id)
        if not data or data.get("policy") is None:
            return None
        policy = data["policy"]
        return policy if isinstance(policy, str) else json.dumps(policy)

    def can_read_secret_value(self, secret_id: str) -> bool:
        self._enter("secretsmanager:GetSecretValue")
        data = self._secret(secret_id)
        return bool(data is not None and data.get("readable", True))

    # =========================================================================
    # Compute and network
    # =========================================================================

    def describe_instance(self, instance_id: str) -> Optional[InstanceFacts]:
        self._enter("ec2:DescribeInstances")
        data = self._section("instances").get(instance_id)
        if data is None:
            return None
        return InstanceFacts(
            instance_id=instance_id,
            instance_profile_arn=data.get("instance_profile_arn"),
            security_group_ids=tuple(data.get("security_group_ids") or ()),
            vpc_id=data.get("vpc_id"),
        )

    def get_ingress_rules(self, group_id: str) -> List[IngressRule]:
        self._enter("ec2:DescribeSecurityGroups")
        return [
            IngressRule(
                from_port=r.get("from_port"),
                to_port=r.get("to_port"),
                source_group_ids=tuple(r.get("source_group_ids") or ()),
                ipv4_ranges=tuple(r.get("ipv4_ranges") or ()),
                ipv6_ranges=tuple(r.get("ipv6_ranges") or ()),
            )
            for r in self._section("security_groups").get(group_id) or []
        ]

    def _tables(self, predicate) -> List[RouteTable]:
        return [
            RouteTable(rtb_id, tuple(data.get("gateway_ids") or ()))
            for rtb_id, data in self._section("route_tables").items()
            if predicate(data or {})
        ]

    def get_route_tables_for_subnet(self, subnet_id: str) -> List[RouteTable]:
        self._enter("ec2:DescribeRouteTables")
        return self._tables(lambda d: subnet_id in (d.get("subnet_ids") or []))

    def get_main_route_tables(self, vpc_id: str) -> List[RouteTable]:
        self._enter("ec2:DescribeRouteTables")
        return self._tables(lambda d: d.get("vpc_id") == vpc_id and bool(d.get("main")))

    def get_subnet_vpc(self, subnet_id: str) -> Optional[str]:
        self._enter("ec2:DescribeSubnets")
        data = self._section("subnets").get(subnet_id)
        return data.get("vpc_id") if data else None

    def describe_db_instance(self, db_id: str) -> Optional[DatabaseFacts]:
        self._enter("rds:DescribeDBInstances")
        data = self._section("databases").get(db_id)
        if data is None:
            return None
        return DatabaseFacts(
            db_id=db_id,
            engine=data.get("engine"),
            port=data.get("port"),
            publicly_accessible=data.get("publicly_accessible"),
            security_group_ids=tuple(data.get("security_group_ids") or ()),
            subnet_group_name=data.get("subnet_group_name"),
        )

    def get_subnet_group_subnets(self, subnet_group_name: str) -> List[str]:
        self._enter("rds:DescribeDBSubnetGroups")
        return list(self._section("subnet_groups").get(subnet_group_name) or [])

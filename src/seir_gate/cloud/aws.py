"""
AWS State Reader

boto3 implementation of the CloudStateReader contract. Only Describe/Get/List
calls are issued.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.config import Config as BotocoreConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
    ProfileNotFound,
)

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

# Error codes that mean "the resource is not there" rather than "cannot ask"
NOT_FOUND_CODES = {
    "ResourceNotFoundException",
    "InvalidInstanceID.NotFound",
    "InvalidInstanceID.Malformed",
    "NoSuchEntity",
    "DBInstanceNotFound",
    "DBInstanceNotFoundFault",
    "DBSubnetGroupNotFoundFault",
    "InvalidGroup.NotFound",
    "InvalidSubnetID.NotFound",
}


def _boto_config(timeout_s: float) -> BotocoreConfig:
    return BotocoreConfig(
        retries={"max_attempts": 3, "mode": "standard"},
        connect_timeout=timeout_s,
        read_timeout=timeout_s,
    )


class AwsStateReader(CloudStateReader):
    """
    Reads identity, secret and network facts from AWS.

    Clients are created lazily from one session so that a reader can be
    built before credentials are known to be valid.
    """

    name = "aws"

    def __init__(
        self,
        region: str,
        profile: Optional[str] = None,
        timeout_s: float = 20.0,
        session: Optional[Any] = None,
    ):
        self.region = region
        self.profile = profile
        self._session = session
        self._config = _boto_config(timeout_s)
        self._clients: Dict[str, Any] = {}

    @property
    def session(self) -> Any:
        if self._session is None:
            try:
                self._session = boto3.Session(profile_name=self.profile, region_name=self.region)
            except ProfileNotFound as e:
                raise CredentialsUnavailableError(f"AWS profile not found: {self.profile}") from e
        return self._session

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self.session.client(
                service, region_name=self.region, config=self._config
            )
        return self._clients[service]

    def _call(self, operation: str, fn: Callable[..., Dict[str, Any]], **kwargs: Any) -> Optional[Dict[str, Any]]:
        """
        Invoke a boto3 operation.

        Returns None when the provider reports the resource as missing.
        """
        logger.debug(f"AWS {operation} {kwargs}")
        try:
            return fn(**kwargs)
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise CredentialsUnavailableError(f"AWS credentials unavailable: {e}") from e
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "Unknown")
            if code in NOT_FOUND_CODES:
                logger.debug(f"AWS {operation}: not found ({code})")
                return None
            raise CloudQueryError(operation, code, error.get("Message", "")) from e
        except BotoCoreError as e:
            raise CloudQueryError(operation, type(e).__name__, str(e)) from e

    # =========================================================================
    # Identity
    # =========================================================================

    def get_caller_identity(self) -> CallerIdentity:
        resp = self._call("sts:GetCallerIdentity", self._client("sts").get_caller_identity)
        if not resp or not resp.get("Arn"):
            raise CloudQueryError("sts:GetCallerIdentity", "EmptyResponse")
        return CallerIdentity(
            arn=resp["Arn"],
            account=resp.get("Account", ""),
            user_id=resp.get("UserId", ""),
        )

    def get_instance_profile_roles(self, profile_name: str) -> List[str]:
        resp = self._call(
            "iam:GetInstanceProfile",
            self._client("iam").get_instance_profile,
            InstanceProfileName=profile_name,
        )
        if not resp:
            return []
        roles = resp.get("InstanceProfile", {}).get("Roles", [])
        return [r["RoleName"] for r in roles if r.get("RoleName")]

    # =========================================================================
    # Secrets Manager
    # =========================================================================

    def describe_secret(self, secret_id: str) -> Optional[SecretMetadata]:
        resp = self._call(
            "secretsmanager:DescribeSecret",
            self._client("secretsmanager").describe_secret,
            SecretId=secret_id,
        )
        if resp is None:
            return None
        rotation = resp.get("RotationEnabled")
        return SecretMetadata(
            name=resp.get("Name", secret_id),
            arn=resp.get("ARN", ""),
            rotation_enabled=bool(rotation) if rotation is not None else None,
        )

    def get_secret_policy(self, secret_id: str) -> Optional[str]:
        resp = self._call(
            "secretsmanager:GetResourcePolicy",
            self._client("secretsmanager").get_resource_policy,
            SecretId=secret_id,
        )
        if not resp:
            return None
        return resp.get("ResourcePolicy") or None

    def can_read_secret_value(self, secret_id: str) -> bool:
        resp = self._call(
            "secretsmanager:GetSecretValue",
            self._client("secretsmanager").get_secret_value,
            SecretId=secret_id,
        )
        readable = resp is not None and ("SecretString" in resp or "SecretBinary" in resp)
        del resp
        return readable

    # =========================================================================
    # EC2
    # =========================================================================

    def describe_instance(self, instance_id: str) -> Optional[InstanceFacts]:
        resp = self._call(
            "ec2:DescribeInstances",
            self._client("ec2").describe_instances,
            InstanceIds=[instance_id],
        )
        if not resp:
            return None
        instances = [i for r in resp.get("Reservations", []) for i in r.get("Instances", [])]
        if not instances:
            return None
        inst = instances[0]
        return InstanceFacts(
            instance_id=inst.get("InstanceId", instance_id),
            instance_profile_arn=(inst.get("IamInstanceProfile") or {}).get("Arn"),
            security_group_ids=tuple(
                sg["GroupId"] for sg in inst.get("SecurityGroups", []) if sg.get("GroupId")
            ),
            vpc_id=inst.get("VpcId"),
        )

    def get_ingress_rules(self, group_id: str) -> List[IngressRule]:
        resp = self._call(
            "ec2:DescribeSecurityGroups",
            self._client("ec2").describe_security_groups,
            GroupIds=[group_id],
        )
        if not resp:
            return []
        rules = []
        for sg in resp.get("SecurityGroups", []):
            for perm in sg.get("IpPermissions", []):
                rules.append(IngressRule(
                    from_port=perm.get("FromPort"),
                    to_port=perm.get("ToPort"),
                    source_group_ids=tuple(
                        p["GroupId"] for p in perm.get("UserIdGroupPairs", []) if p.get("GroupId")
                    ),
                    ipv4_ranges=tuple(
                        r["CidrIp"] for r in perm.get("IpRanges", []) if r.get("CidrIp")
                    ),
                    ipv6_ranges=tuple(
                        r["CidrIpv6"] for r in perm.get("Ipv6Ranges", []) if r.get("CidrIpv6")
                    ),
                ))
        return rules

    def _route_tables(self, operation: str, filters: List[Dict[str, Any]]) -> List[RouteTable]:
        ec2 = self._client("ec2")
        tables: List[RouteTable] = []
        paginator = ec2.get_paginator("describe_route_tables")

        def _collect(**kwargs: Any) -> Dict[str, Any]:
            for page in paginator.paginate(**kwargs):
                for rt in page.get("RouteTables", []):
                    tables.append(RouteTable(
                        route_table_id=rt["RouteTableId"],
                        gateway_ids=tuple(
                            r["GatewayId"] for r in rt.get("Routes", []) if r.get("GatewayId")
                        ),
                    ))
            return {}

        self._call(operation, _collect, Filters=filters)
        return tables

    def get_route_tables_for_subnet(self, subnet_id: str) -> List[RouteTable]:
        return self._route_tables(
            "ec2:DescribeRouteTables",
            [{"Name": "association.subnet-id", "Values": [subnet_id]}],
        )

    def get_main_route_tables(self, vpc_id: str) -> List[RouteTable]:
        return self._route_tables(
            "ec2:DescribeRouteTables",
            [
                {"Name": "vpc-id", "Values": [vpc_id]},
                {"Name": "association.main", "Values": ["true"]},
            ],
        )

    def get_subnet_vpc(self, subnet_id: str) -> Optional[str]:
        resp = self._call(
            "ec2:DescribeSubnets",
            self._client("ec2").describe_subnets,
            SubnetIds=[subnet_id],
        )
        if not resp or not resp.get("Subnets"):
            return None
        return resp["Subnets"][0].get("VpcId")

    # =========================================================================
    # RDS
    # =========================================================================

    def describe_db_instance(self, db_id: str) -> Optional[DatabaseFacts]:
        resp = self._call(
            "rds:DescribeDBInstances",
            self._client("rds").describe_db_instances,
            DBInstanceIdentifier=db_id,
        )
        if not resp or not resp.get("DBInstances"):
            return None
        db = resp["DBInstances"][0]
        port = (db.get("Endpoint") or {}).get("Port") or db.get("DbInstancePort") or None
        return DatabaseFacts(
            db_id=db.get("DBInstanceIdentifier", db_id),
            engine=db.get("Engine"),
            port=int(port) if port else None,
            publicly_accessible=db.get("PubliclyAccessible"),
            security_group_ids=tuple(
                g["VpcSecurityGroupId"]
                for g in db.get("VpcSecurityGroups", [])
                if g.get("VpcSecurityGroupId")
            ),
            subnet_group_name=(db.get("DBSubnetGroup") or {}).get("DBSubnetGroupName"),
        )

    def get_subnet_group_subnets(self, subnet_group_name: str) -> List[str]:
        resp = self._call(
            "rds:DescribeDBSubnetGroups",
            self._client("rds").describe_db_subnet_groups,
            DBSubnetGroupName=subnet_group_name,
        )
        if not resp or not resp.get("DBSubnetGroups"):
            return []
        subnets = resp["DBSubnetGroups"][0].get("Subnets", [])
        return [s["SubnetIdentifier"] for s in subnets if s.get("SubnetIdentifier")]

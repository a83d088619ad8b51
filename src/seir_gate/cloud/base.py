"""
Cloud State Reader Interface

Read-only query contract the gates depend on. Implementations translate
provider responses into the typed facts below; they never create or modify
resources.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..main import GateExecutionError


class CloudQueryError(Exception):
    """A query was attempted and rejected (access denied, throttled, bad id)"""

    def __init__(self, operation: str, code: str = "Unknown", message: str = ""):
        self.operation = operation
        self.code = code
        self.message = message
        super().__init__(f"{operation} failed ({code}){': ' + message if message else ''}")


class CredentialsUnavailableError(GateExecutionError):
    """No usable credentials; no query can be attempted at all"""
    pass


@dataclass(frozen=True)
class CallerIdentity:
    arn: str
    account: str = ""
    user_id: str = ""


@dataclass(frozen=True)
class SecretMetadata:
    """Describable metadata of a secret; never carries the value"""
    name: str
    arn: str = ""
    rotation_enabled: Optional[bool] = None


@dataclass(frozen=True)
class InstanceFacts:
    instance_id: str
    instance_profile_arn: Optional[str] = None
    security_group_ids: Tuple[str, ...] = ()
    vpc_id: Optional[str] = None


@dataclass(frozen=True)
class DatabaseFacts:
    db_id: str
    engine: Optional[str] = None
    port: Optional[int] = None
    publicly_accessible: Optional[bool] = None
    security_group_ids: Tuple[str, ...] = ()
    subnet_group_name: Optional[str] = None


@dataclass(frozen=True)
class IngressRule:
    """One entry of a security group's inbound permissions"""
    from_port: Optional[int] = None
    to_port: Optional[int] = None
    source_group_ids: Tuple[str, ...] = ()
    ipv4_ranges: Tuple[str, ...] = ()
    ipv6_ranges: Tuple[str, ...] = ()

    def covers_exactly(self, port: int) -> bool:
        return self.from_port == port and self.to_port == port


@dataclass(frozen=True)
class RouteTable:
    route_table_id: str
    gateway_ids: Tuple[str, ...] = field(default_factory=tuple)


class CloudStateReader(ABC):
    """
    Base class for cloud state readers.

    Not-found conditions are returned as ``None`` or an empty list.
    Every other failure to answer raises ``CloudQueryError``; a total
    absence of credentials raises ``CredentialsUnavailableError``.
    """

    name: str = "base"

    @abstractmethod
    def get_caller_identity(self) -> CallerIdentity:
        """Identity of the principal running the queries"""
        pass

    @abstractmethod
    def describe_secret(self, secret_id: str) -> Optional[SecretMetadata]:
        pass

    @abstractmethod
    def get_secret_policy(self, secret_id: str) -> Optional[str]:
        """Resource policy document as JSON text, or None if none is attached"""
        pass

    @abstractmethod
    def can_read_secret_value(self, secret_id: str) -> bool:
        """
        Attempt to retrieve the secret value and report only success.

        Implementations must discard the payload before returning.
        """
        pass

    @abstractmethod
    def describe_instance(self, instance_id: str) -> Optional[InstanceFacts]:
        pass

    @abstractmethod
    def get_instance_profile_roles(self, profile_name: str) -> List[str]:
        """Role names attached to an instance profile, in provider order"""
        pass

    @abstractmethod
    def describe_db_instance(self, db_id: str) -> Optional[DatabaseFacts]:
        pass

    @abstractmethod
    def get_ingress_rules(self, group_id: str) -> List[IngressRule]:
        pass

    @abstractmethod
    def get_subnet_group_subnets(self, subnet_group_name: str) -> List[str]:
        pass

    @abstractmethod
    def get_route_tables_for_subnet(self, subnet_id: str) -> List[RouteTable]:
        """Route tables explicitly associated with a subnet"""
        pass

    @abstractmethod
    def get_subnet_vpc(self, subnet_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def get_main_route_tables(self, vpc_id: str) -> List[RouteTable]:
        """The VPC's main route table(s), used when a subnet has no association"""
        pass

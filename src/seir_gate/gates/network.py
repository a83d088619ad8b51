"""
Network Gate (network_db)

Proves that the only path from the instance to the database is an explicit
security-group-to-security-group rule on the database port, not a broad CIDR
allowance, and optionally that the database subnets have no internet route.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..cloud.base import CloudQueryError, DatabaseFacts, IngressRule, RouteTable
from ..main import CheckResult, RunContext
from .base import CALLER_IDENTITY, Gate, GateState, QueryTimeoutError, Step

logger = logging.getLogger(__name__)

DB_EXISTS = "db_exists"
DB_NOT_PUBLIC = "db_not_public"
DB_PORT = "db_port"
INSTANCE_SECURITY_GROUPS = "instance_security_groups"
DB_SECURITY_GROUPS = "db_security_groups"
DB_SG_RULES = "db_sg_rules"
SG_TO_SG_INGRESS = "sg_to_sg_ingress"
DB_PORT_OPEN_WORLD = "db_port_open_world"
PRIVATE_SUBNETS = "private_subnets"

OPEN_WORLD_CIDRS = frozenset({"0.0.0.0/0", "::/0"})


def grants_sg_to_sg(
    rules_by_group: Mapping[str, List[IngressRule]],
    source_groups: Iterable[str],
    port: int,
) -> bool:
    """Any database group admits any of ``source_groups`` on exactly ``port``"""
    sources = set(source_groups)
    return any(
        rule.covers_exactly(port) and sources.intersection(rule.source_group_ids)
        for rules in rules_by_group.values()
        for rule in rules
    )


def open_world_groups(rules_by_group: Mapping[str, List[IngressRule]], port: int) -> List[str]:
    """Database groups that admit 0.0.0.0/0 or ::/0 on exactly ``port``"""
    return [
        group_id
        for group_id, rules in rules_by_group.items()
        if any(
            rule.covers_exactly(port)
            and OPEN_WORLD_CIDRS.intersection(rule.ipv4_ranges + rule.ipv6_ranges)
            for rule in rules
        )
    ]


def internet_gateways(tables: Iterable[RouteTable]) -> List[str]:
    return sorted({g for t in tables for g in t.gateway_ids if g.startswith("igw-")})


@dataclass
class NetworkFacts(GateState):
    db: Optional[DatabaseFacts] = None
    port: Optional[int] = None
    port_source: str = ""
    instance_sgs: Tuple[str, ...] = ()
    db_sgs: Tuple[str, ...] = ()
    sg_to_sg_ok: Optional[bool] = None
    open_world: List[str] = field(default_factory=list)
    subnets: List[str] = field(default_factory=list)

    def context(self) -> Dict[str, Any]:
        db = self.db
        return {
            **super().context(),
            "engine": (db.engine if db else None) or "",
            "db_port": self.port,
            "db_port_source": self.port_source,
            "publicly_accessible": db.publicly_accessible if db else None,
            "ec2_security_groups": list(self.instance_sgs),
            "rds_security_groups": list(self.db_sgs),
            "db_subnet_group": (db.subnet_group_name if db else None) or "",
            "db_subnets": list(self.subnets),
            "sg_to_sg_ok": self.sg_to_sg_ok,
            "open_world_groups": list(self.open_world),
        }


class NetworkGate(Gate):
    """EC2 <-> RDS network verification"""

    name = "network_db"
    title = "Network + RDS Verification"
    required_inputs = ("instance_id", "db_id")

    def new_state(self, ctx: RunContext) -> NetworkFacts:
        return NetworkFacts()

    def steps(self) -> List[Tuple[str, Step]]:
        return [
            (CALLER_IDENTITY, self.check_caller_identity),
            (DB_EXISTS, self.check_db_exists),
            (DB_NOT_PUBLIC, self.check_not_public),
            (DB_PORT, self.check_port),
            (INSTANCE_SECURITY_GROUPS, self.check_instance_groups),
            (DB_SECURITY_GROUPS, self.check_db_groups),
            (SG_TO_SG_INGRESS, self.check_ingress),
            (PRIVATE_SUBNETS, self.check_private_subnets),
        ]

    # =========================================================================
    # Database facts
    # =========================================================================

    async def check_db_exists(self, ctx: RunContext, state: NetworkFacts) -> List[CheckResult]:
        try:
            db = await self.query(self.reader.describe_db_instance, ctx.db_id)
        except CloudQueryError as e:
            return [CheckResult.failed(DB_EXISTS, f"cannot describe RDS instance ({ctx.db_id}): {e.code}.")]

        if db is None:
            return [CheckResult.failed(DB_EXISTS, f"RDS instance not found ({ctx.db_id}).")]

        state.db = db
        return [CheckResult.passed(DB_EXISTS, f"RDS instance exists ({ctx.db_id}).")]

    async def check_not_public(self, ctx: RunContext, state: NetworkFacts) -> List[CheckResult]:
        flag = state.db.publicly_accessible if state.db else None
        if flag is False:
            return [CheckResult.passed(DB_NOT_PUBLIC, "RDS is not publicly accessible (PubliclyAccessible=False).")]
        if flag is True:
            return [CheckResult.failed(DB_NOT_PUBLIC, "RDS is publicly accessible (PubliclyAccessible=True).")]
        return [CheckResult.warning(
            DB_NOT_PUBLIC,
            f"could not determine PubliclyAccessible for {ctx.db_id} (value=Unknown).",
        )]

    async def check_port(self, ctx: RunContext, state: NetworkFacts) -> List[CheckResult]:
        if ctx.db_port_override is not None:
            state.port = ctx.db_port_override
            state.port_source = "override"
            return [CheckResult.info(DB_PORT, f"using DB_PORT override = {state.port}.")]

        discovered = state.db.port if state.db else None
        if discovered:
            state.port = discovered
            state.port_source = "discovered"
            engine = (state.db.engine if state.db else None) or "unknown"
            return [CheckResult.passed(DB_PORT, f"discovered DB port = {discovered} (engine={engine}).")]

        return [CheckResult.failed(
            DB_PORT,
            f"could not discover DB port for {ctx.db_id} (set DB_PORT=... to override).",
        )]

    # =========================================================================
    # Security groups
    # =========================================================================

    async def check_instance_groups(self, ctx: RunContext, state: NetworkFacts) -> List[CheckResult]:
        try:
            instance = await self.query(self.reader.describe_instance, ctx.instance_id)
        except CloudQueryError as e:
            return [CheckResult.failed(
                INSTANCE_SECURITY_GROUPS,
                f"could not resolve EC2 security groups for {ctx.instance_id}: {e.code}.",
            )]

        if instance is None or not instance.security_group_ids:
            return [CheckResult.failed(
                INSTANCE_SECURITY_GROUPS,
                f"could not resolve EC2 security groups for {ctx.instance_id}.",
            )]

        state.instance_sgs = instance.security_group_ids
        return [CheckResult.passed(
            INSTANCE_SECURITY_GROUPS,
            f"EC2 security groups resolved ({ctx.instance_id}): {' '.join(state.instance_sgs)}",
        )]

    async def check_db_groups(self, ctx: RunContext, state: NetworkFacts) -> List[CheckResult]:
        groups = state.db.security_group_ids if state.db else ()
        if not groups:
            return [CheckResult.failed(
                DB_SECURITY_GROUPS,
                f"could not resolve RDS VPC security groups for {ctx.db_id}.",
            )]

        state.db_sgs = groups
        return [CheckResult.passed(
            DB_SECURITY_GROUPS,
            f"RDS security groups resolved ({ctx.db_id}): {' '.join(groups)}",
        )]

    async def check_ingress(self, ctx: RunContext, state: NetworkFacts) -> List[CheckResult]:
        """
        Evaluate the scoped rule and the open-world rule independently.

        A correct SG-to-SG rule does not excuse a world-open one on the
        same port; both outcomes are reported.
        """
        if not (state.port and state.instance_sgs and state.db_sgs):
            reason = "DB port and both security group sets must resolve first"
            return [
                CheckResult.info(SG_TO_SG_INGRESS, f"SG-to-SG ingress check skipped: {reason}."),
                CheckResult.info(DB_PORT_OPEN_WORLD, f"open-world ingress check skipped: {reason}."),
            ]

        port = state.port
        results: List[CheckResult] = []
        rules_by_group: Dict[str, List[IngressRule]] = {}
        unread: List[str] = []

        for group_id in state.db_sgs:
            try:
                rules_by_group[group_id] = await self.query(self.reader.get_ingress_rules, group_id)
            except CloudQueryError as e:
                unread.append(group_id)
                results.append(CheckResult.warning(
                    DB_SG_RULES,
                    f"could not read ingress rules of RDS SG {group_id} ({e.code}); "
                    "its rules were not evaluated.",
                ))
            except QueryTimeoutError as e:
                unread.append(group_id)
                results.append(CheckResult.error(DB_SG_RULES, f"{e} reading RDS SG {group_id}."))

        state.sg_to_sg_ok = grants_sg_to_sg(rules_by_group, state.instance_sgs, port)
        state.open_world = open_world_groups(rules_by_group, port)

        if state.sg_to_sg_ok:
            results.append(CheckResult.passed(
                SG_TO_SG_INGRESS,
                f"RDS SG allows DB port {port} from EC2 SG (SG-to-SG ingress present).",
            ))
        else:
            results.append(CheckResult.failed(
                SG_TO_SG_INGRESS,
                f"no SG-to-SG ingress rule found allowing EC2 SG -> RDS on port {port}.",
            ))

        for group_id in state.open_world:
            results.append(CheckResult.failed(
                DB_PORT_OPEN_WORLD,
                f"RDS SG {group_id} allows DB port {port} from the world (0.0.0.0/0 or ::/0).",
            ))
        if unread:
            results.append(CheckResult.warning(
                DB_PORT_OPEN_WORLD,
                f"open-world ingress inconclusive: rules of RDS SG {' '.join(unread)} not read.",
            ))
        elif not state.open_world:
            results.append(CheckResult.passed(
                DB_PORT_OPEN_WORLD,
                f"no RDS SG allows DB port {port} from 0.0.0.0/0 or ::/0.",
            ))
        return results

    # =========================================================================
    # Subnet privacy
    # =========================================================================

    async def check_private_subnets(self, ctx: RunContext, state: NetworkFacts) -> List[CheckResult]:
        if not ctx.toggles.check_private_subnets:
            return [CheckResult.info(
                PRIVATE_SUBNETS,
                "private subnet check disabled (CHECK_PRIVATE_SUBNETS=false).",
            )]

        group_name = state.db.subnet_group_name if state.db else None
        if not group_name:
            return [CheckResult.warning(
                PRIVATE_SUBNETS,
                "could not resolve DBSubnetGroupName; skipping private subnet checks.",
            )]

        try:
            subnets = await self.query(self.reader.get_subnet_group_subnets, group_name)
        except CloudQueryError:
            subnets = []
        if not subnets:
            return [CheckResult.warning(
                PRIVATE_SUBNETS,
                f"could not list subnets for DB subnet group ({group_name}).",
            )]

        state.subnets = list(subnets)
        results = [CheckResult.info(
            PRIVATE_SUBNETS,
            f"DB subnet group ({group_name}) subnets: {' '.join(subnets)}",
        )]
        for subnet_id in subnets:
            try:
                results.append(await self._check_subnet(subnet_id))
            except QueryTimeoutError as e:
                results.append(CheckResult.error(PRIVATE_SUBNETS, f"{e} resolving subnet {subnet_id}."))
        return results

    async def _resolve_route_tables(self, subnet_id: str) -> List[RouteTable]:
        """Explicit association first, then the VPC's main route table"""
        try:
            tables = await self.query(self.reader.get_route_tables_for_subnet, subnet_id)
        except CloudQueryError:
            tables = []
        if tables:
            return tables

        try:
            vpc_id = await self.query(self.reader.get_subnet_vpc, subnet_id)
            if not vpc_id:
                return []
            return await self.query(self.reader.get_main_route_tables, vpc_id)
        except CloudQueryError as e:
            logger.debug(f"Main route table lookup for {subnet_id} failed: {e}")
            return []

    async def _check_subnet(self, subnet_id: str) -> CheckResult:
        tables = await self._resolve_route_tables(subnet_id)
        if not tables:
            return CheckResult.warning(
                PRIVATE_SUBNETS,
                f"could not resolve route table for subnet {subnet_id} (private subnet check inconclusive).",
            )

        igws = internet_gateways(tables)
        if igws:
            return CheckResult.failed(
                PRIVATE_SUBNETS,
                f"subnet {subnet_id} has IGW route via {' '.join(igws)} (not private).",
            )
        table_ids = " ".join(t.route_table_id for t in tables)
        return CheckResult.passed(
            PRIVATE_SUBNETS,
            f"subnet {subnet_id} shows no IGW route ({table_ids}) (private check OK).",
        )

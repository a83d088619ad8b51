"""
Identity Gate (secrets_and_role)

Proves that the instance's assigned role, and only that role, can resolve
and use the designated secret:

  secret exists -> rotation/policy posture -> instance profile attached ->
  profile resolves to a role -> expected role -> caller runs as that role ->
  role can describe (and optionally read) the secret.

The secret value never leaves the reader; only a boolean is recorded.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..cloud.base import CloudQueryError, InstanceFacts, SecretMetadata
from ..main import CheckResult, RunContext
from .base import CALLER_IDENTITY, Gate, GateState, Step

logger = logging.getLogger(__name__)

SECRET_EXISTS = "secret_exists"
SECRET_ROTATION = "secret_rotation"
SECRET_POLICY_WILDCARD = "secret_policy_wildcard"
INSTANCE_PROFILE_ATTACHED = "instance_profile_attached"
PROFILE_ROLE_RESOLVED = "profile_role_resolved"
EXPECTED_ROLE_MATCH = "expected_role_match"
CALLER_ROLE_CONTEXT = "caller_role_context"
ON_INSTANCE_DESCRIBE = "on_instance_describe_secret"
ON_INSTANCE_READ_VALUE = "on_instance_read_secret_value"


def is_instance_profile_arn(value: Optional[str]) -> bool:
    return bool(value) and value.startswith("arn:") and ":iam::" in value


def profile_name_from_arn(arn: str) -> str:
    """``arn:aws:iam::123:instance-profile/path/name`` -> ``name``"""
    return arn.rsplit("/", 1)[-1]


def _is_wildcard(principal: Any) -> bool:
    if principal == "*":
        return True
    if isinstance(principal, list):
        return any(_is_wildcard(p) for p in principal)
    if isinstance(principal, dict):
        return any(_is_wildcard(v) for v in principal.values())
    return False


def policy_allows_wildcard(document: Dict[str, Any]) -> bool:
    """
    True when an Allow statement grants access to an unrestricted principal.

    ``Principal: "*"``, ``{"AWS": "*"}`` and lists containing ``"*"`` all
    count, as does an Allow with ``NotPrincipal``.
    """
    statements = document.get("Statement", [])
    if isinstance(statements, dict):
        statements = [statements]

    for stmt in statements:
        if not isinstance(stmt, dict) or stmt.get("Effect") != "Allow":
            continue
        if "NotPrincipal" in stmt:
            return True
        if _is_wildcard(stmt.get("Principal")):
            return True
    return False


@dataclass
class IdentityFacts(GateState):
    """Optional facts resolved along the identity chain"""
    secret: Optional[SecretMetadata] = None
    instance: Optional[InstanceFacts] = None
    profile_arn: Optional[str] = None
    profile_name: Optional[str] = None
    resolved_role: Optional[str] = None
    expected_role: Optional[str] = None
    on_instance: bool = False

    def context(self) -> Dict[str, Any]:
        return {
            **super().context(),
            "secret_arn": self.secret.arn if self.secret else "",
            "rotation_enabled": self.secret.rotation_enabled if self.secret else None,
            "resolved_instance_profile_arn": self.profile_arn or "",
            "instance_profile_name": self.profile_name or "",
            "resolved_role_name": self.resolved_role or "",
            "expected_role_name": self.expected_role or "",
            "on_instance": self.on_instance,
        }


class IdentityGate(Gate):
    """Secrets + instance role verification"""

    name = "secrets_and_role"
    title = "Secrets + EC2 Role Verification"
    required_inputs = ("instance_id", "secret_id")

    def new_state(self, ctx: RunContext) -> IdentityFacts:
        return IdentityFacts()

    def steps(self) -> List[Tuple[str, Step]]:
        return [
            (CALLER_IDENTITY, self.check_caller_identity),
            (SECRET_EXISTS, self.check_secret_exists),
            (SECRET_ROTATION, self.check_rotation),
            (SECRET_POLICY_WILDCARD, self.check_policy_wildcard),
            (INSTANCE_PROFILE_ATTACHED, self.check_profile_attached),
            (PROFILE_ROLE_RESOLVED, self.check_profile_role),
            (EXPECTED_ROLE_MATCH, self.check_expected_role),
            (CALLER_ROLE_CONTEXT, self.check_caller_role_context),
            (ON_INSTANCE_DESCRIBE, self.check_on_instance_describe),
            (ON_INSTANCE_READ_VALUE, self.check_on_instance_read_value),
        ]

    # =========================================================================
    # Secret posture
    # =========================================================================

    async def check_secret_exists(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        secret_id = ctx.secret_id
        try:
            meta = await self.query(self.reader.describe_secret, secret_id)
        except CloudQueryError as e:
            return [CheckResult.failed(
                SECRET_EXISTS,
                f"cannot describe secret ({secret_id}): {e.code}. You may lack permission.",
            )]

        if meta is None:
            return [CheckResult.failed(SECRET_EXISTS, f"secret does not exist ({secret_id}).")]

        state.secret = meta
        return [CheckResult.passed(SECRET_EXISTS, f"secret exists and is describable ({secret_id}).")]

    async def check_rotation(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        if not ctx.toggles.require_rotation:
            return [CheckResult.info(
                SECRET_ROTATION,
                "rotation requirement not evaluated (REQUIRE_ROTATION=false).",
            )]
        if state.secret is None:
            return [CheckResult.info(
                SECRET_ROTATION,
                "rotation check skipped: secret could not be described.",
            )]

        rotation = state.secret.rotation_enabled
        if rotation is True:
            return [CheckResult.passed(SECRET_ROTATION, f"secret rotation enabled ({ctx.secret_id}).")]

        shown = "Unknown" if rotation is None else str(rotation)
        return [CheckResult.failed(
            SECRET_ROTATION,
            f"secret rotation is not enabled (RotationEnabled={shown}) for {ctx.secret_id}.",
        )]

    async def check_policy_wildcard(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        if not ctx.toggles.check_policy_wildcard:
            return [CheckResult.info(
                SECRET_POLICY_WILDCARD,
                "secret policy wildcard check disabled (CHECK_SECRET_POLICY_WILDCARD=false).",
            )]
        if state.secret is None:
            return [CheckResult.info(
                SECRET_POLICY_WILDCARD,
                "secret policy check skipped: secret could not be described.",
            )]

        try:
            policy = await self.query(self.reader.get_secret_policy, ctx.secret_id)
        except CloudQueryError as e:
            return [CheckResult.warning(
                SECRET_POLICY_WILDCARD,
                f"could not read secret resource policy ({e.code}); wildcard check inconclusive.",
            )]

        if not policy:
            return [CheckResult.passed(
                SECRET_POLICY_WILDCARD,
                f"no resource policy attached (OK) ({ctx.secret_id}).",
            )]

        try:
            document = json.loads(policy)
        except ValueError:
            document = None
        if not isinstance(document, dict):
            return [CheckResult.warning(
                SECRET_POLICY_WILDCARD,
                f"secret resource policy is not a valid JSON object ({ctx.secret_id}); wildcard check inconclusive.",
            )]

        if policy_allows_wildcard(document):
            return [CheckResult.failed(
                SECRET_POLICY_WILDCARD,
                f'secret resource policy allows wildcard Principal="*" ({ctx.secret_id}).',
            )]
        return [CheckResult.passed(
            SECRET_POLICY_WILDCARD,
            f"secret resource policy does not grant a wildcard principal ({ctx.secret_id}).",
        )]

    # =========================================================================
    # Instance identity chain
    # =========================================================================

    async def check_profile_attached(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        instance_id = ctx.instance_id
        try:
            instance = await self.query(self.reader.describe_instance, instance_id)
        except CloudQueryError as e:
            return [CheckResult.failed(
                INSTANCE_PROFILE_ATTACHED,
                f"cannot describe instance ({instance_id}): {e.code}.",
            )]

        if instance is None:
            return [CheckResult.failed(
                INSTANCE_PROFILE_ATTACHED,
                f"instance not found ({instance_id}); no IAM instance profile can be verified.",
            )]

        state.instance = instance
        if not is_instance_profile_arn(instance.instance_profile_arn):
            return [CheckResult.failed(
                INSTANCE_PROFILE_ATTACHED,
                f"instance has NO IAM instance profile attached ({instance_id}).",
            )]

        state.profile_arn = instance.instance_profile_arn
        return [CheckResult.passed(
            INSTANCE_PROFILE_ATTACHED,
            f"instance has IAM instance profile attached ({instance_id}).",
        )]

    async def check_profile_role(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        if not state.profile_arn:
            return [CheckResult.info(
                PROFILE_ROLE_RESOLVED,
                "role resolution skipped: no instance profile attached.",
            )]

        profile_name = profile_name_from_arn(state.profile_arn)
        state.profile_name = profile_name
        try:
            roles = await self.query(self.reader.get_instance_profile_roles, profile_name)
        except CloudQueryError as e:
            return [CheckResult.failed(
                PROFILE_ROLE_RESOLVED,
                f"could not resolve role name from instance profile ({profile_name}): {e.code}.",
            )]

        if not roles:
            return [CheckResult.failed(
                PROFILE_ROLE_RESOLVED,
                f"could not resolve role name from instance profile ({profile_name}).",
            )]

        state.resolved_role = roles[0]
        return [CheckResult.passed(
            PROFILE_ROLE_RESOLVED,
            f"resolved instance profile -> role ({profile_name} -> {state.resolved_role}).",
        )]

    async def check_expected_role(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        expected = ctx.expected_role_name
        if expected:
            state.expected_role = expected
            if state.resolved_role == expected:
                return [CheckResult.passed(
                    EXPECTED_ROLE_MATCH,
                    f"resolved role matches EXPECTED_ROLE_NAME ({expected}).",
                )]
            return [CheckResult.failed(
                EXPECTED_ROLE_MATCH,
                f"resolved role ({state.resolved_role or '(none)'}) does not match "
                f"EXPECTED_ROLE_NAME ({expected}).",
            )]

        if state.resolved_role:
            state.expected_role = state.resolved_role
            return [CheckResult.info(
                EXPECTED_ROLE_MATCH,
                f"EXPECTED_ROLE_NAME not set; using resolved role ({state.resolved_role}).",
            )]
        return [CheckResult.info(
            EXPECTED_ROLE_MATCH,
            "EXPECTED_ROLE_NAME not set and no role resolved; expected role unknown.",
        )]

    async def check_caller_role_context(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        """Off-instance runs are normal, so a mismatch only warns"""
        expected = state.expected_role
        if not expected:
            return [CheckResult.warning(
                CALLER_ROLE_CONTEXT,
                "expected role unknown; cannot validate caller role context.",
            )]

        if state.caller_arn and f":assumed-role/{expected}/" in state.caller_arn:
            state.on_instance = True
            return [CheckResult.passed(
                CALLER_ROLE_CONTEXT,
                f"current caller is running as expected role ({expected}).",
            )]
        return [CheckResult.warning(
            CALLER_ROLE_CONTEXT,
            f"current caller ARN is not assumed-role/{expected} (you may be running off-instance).",
        )]

    # =========================================================================
    # In-context capability
    # =========================================================================

    async def check_on_instance_describe(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        if not state.on_instance:
            return [CheckResult.info(
                ON_INSTANCE_DESCRIBE,
                "on-instance describe check skipped (not running as expected role on EC2).",
            )]

        try:
            meta = await self.query(self.reader.describe_secret, ctx.secret_id)
        except CloudQueryError as e:
            return [CheckResult.failed(
                ON_INSTANCE_DESCRIBE,
                f"on-instance role cannot describe secret ({ctx.secret_id}): {e.code}.",
            )]
        if meta is None:
            return [CheckResult.failed(
                ON_INSTANCE_DESCRIBE,
                f"on-instance role cannot describe secret ({ctx.secret_id}).",
            )]
        return [CheckResult.passed(
            ON_INSTANCE_DESCRIBE,
            f"on-instance role can describe secret ({ctx.secret_id}).",
        )]

    async def check_on_instance_read_value(self, ctx: RunContext, state: IdentityFacts) -> List[CheckResult]:
        if not state.on_instance:
            return [CheckResult.info(
                ON_INSTANCE_READ_VALUE,
                "on-instance secret-value read skipped (not running as expected role on EC2).",
            )]
        if not ctx.toggles.check_value_read:
            return [CheckResult.info(
                ON_INSTANCE_READ_VALUE,
                "secret-value read check disabled (CHECK_SECRET_VALUE_READ=false).",
            )]

        try:
            readable = await self.query(self.reader.can_read_secret_value, ctx.secret_id)
        except CloudQueryError as e:
            return [CheckResult.failed(
                ON_INSTANCE_READ_VALUE,
                f"on-instance role cannot read secret value ({ctx.secret_id}): {e.code}.",
            )]

        if readable:
            return [CheckResult.passed(
                ON_INSTANCE_READ_VALUE,
                f"on-instance role can read secret value ({ctx.secret_id}) (value not printed).",
            )]
        return [CheckResult.failed(
            ON_INSTANCE_READ_VALUE,
            f"on-instance role cannot read secret value ({ctx.secret_id}).",
        )]

"""
Verification Gates

Each gate is an ordered set of checks with a single PASS/FAIL verdict.
"""

from .base import Gate, GateState, QueryTimeoutError
from .identity import IdentityGate, policy_allows_wildcard
from .network import NetworkGate, grants_sg_to_sg, open_world_groups

GATES = {
    IdentityGate.name: IdentityGate,
    NetworkGate.name: NetworkGate,
}

__all__ = [
    "Gate",
    "GateState",
    "QueryTimeoutError",
    "IdentityGate",
    "NetworkGate",
    "GATES",
    "policy_allows_wildcard",
    "grants_sg_to_sg",
    "open_world_groups",
]

"""
Shared fixtures: a healthy recorded environment and a matching run context.
"""

import copy

import pytest

from seir_gate.cloud import SnapshotStateReader
from seir_gate.main import GateToggles, RunContext

ACCOUNT = "123456789012"
ON_INSTANCE_ARN = f"arn:aws:sts::{ACCOUNT}:assumed-role/app-role/i-0abc1234"
OFF_INSTANCE_ARN = f"arn:aws:iam::{ACCOUNT}:user/ci-runner"
SECRET_PAYLOAD = "hunter2-do-not-print"

HEALTHY_STATE = {
    "caller": {"arn": ON_INSTANCE_ARN, "account": ACCOUNT},
    "secrets": {
        "app/db-credentials": {
            "arn": f"arn:aws:secretsmanager:us-east-1:{ACCOUNT}:secret:app/db-credentials-Ab12Cd",
            "rotation_enabled": True,
            "policy": None,
            "readable": True,
            "value": SECRET_PAYLOAD,
        },
    },
    "instances": {
        "i-0abc1234": {
            "instance_profile_arn": f"arn:aws:iam::{ACCOUNT}:instance-profile/app-profile",
            "security_group_ids": ["sg-ec2"],
            "vpc_id": "vpc-1",
        },
    },
    "instance_profiles": {"app-profile": ["app-role"]},
    "databases": {
        "appdb": {
            "engine": "mysql",
            "port": 3306,
            "publicly_accessible": False,
            "security_group_ids": ["sg-rds"],
            "subnet_group_name": "db-private",
        },
    },
    "security_groups": {
        "sg-rds": [
            {"from_port": 3306, "to_port": 3306, "source_group_ids": ["sg-ec2"]},
        ],
    },
    "subnet_groups": {"db-private": ["subnet-a", "subnet-b"]},
    "subnets": {
        "subnet-a": {"vpc_id": "vpc-1"},
        "subnet-b": {"vpc_id": "vpc-1"},
    },
    "route_tables": {
        "rtb-private": {
            "vpc_id": "vpc-1",
            "main": False,
            "subnet_ids": ["subnet-a"],
            "gateway_ids": ["local"],
        },
        "rtb-main": {
            "vpc_id": "vpc-1",
            "main": True,
            "subnet_ids": [],
            "gateway_ids": ["local"],
        },
    },
}


@pytest.fixture
def state():
    """A fresh copy of the healthy environment, safe to mutate"""
    return copy.deepcopy(HEALTHY_STATE)


@pytest.fixture
def reader(state):
    return SnapshotStateReader(state)


@pytest.fixture
def ctx():
    return RunContext(
        region="us-east-1",
        instance_id="i-0abc1234",
        secret_id="app/db-credentials",
        db_id="appdb",
        toggles=GateToggles(),
        query_timeout_s=5.0,
    )

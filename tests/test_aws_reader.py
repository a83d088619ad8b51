"""
Tests for the boto3-backed reader, with mocked clients
"""

import pytest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError, NoCredentialsError

from seir_gate.cloud import CloudQueryError, CredentialsUnavailableError
from seir_gate.cloud.aws import AwsStateReader


def client_error(code, operation="Op"):
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


@pytest.fixture
def clients():
    return {
        "sts": MagicMock(),
        "secretsmanager": MagicMock(),
        "ec2": MagicMock(),
        "iam": MagicMock(),
        "rds": MagicMock(),
    }


@pytest.fixture
def aws(clients):
    session = MagicMock()
    session.client.side_effect = lambda service, **kwargs: clients[service]
    return AwsStateReader(region="us-east-1", session=session, timeout_s=5)


class TestAwsStateReader:
    """Tests for AwsStateReader response mapping"""

    def test_caller_identity(self, aws, clients):
        """Should map the STS response"""
        clients["sts"].get_caller_identity.return_value = {
            "Arn": "arn:aws:sts::123:assumed-role/app-role/i-1",
            "Account": "123",
            "UserId": "AROA:i-1",
        }

        caller = aws.get_caller_identity()

        assert caller.arn.endswith("assumed-role/app-role/i-1")
        assert caller.account == "123"

    def test_no_credentials(self, aws, clients):
        """Should raise CredentialsUnavailableError without credentials"""
        clients["sts"].get_caller_identity.side_effect = NoCredentialsError()

        with pytest.raises(CredentialsUnavailableError):
            aws.get_caller_identity()

    def test_secret_not_found_is_none(self, aws, clients):
        """Should return None for a missing secret"""
        clients["secretsmanager"].describe_secret.side_effect = client_error("ResourceNotFoundException")

        assert aws.describe_secret("missing") is None

    def test_access_denied_raises(self, aws, clients):
        """Should surface other client errors with their code"""
        clients["secretsmanager"].describe_secret.side_effect = client_error("AccessDeniedException")

        with pytest.raises(CloudQueryError) as exc:
            aws.describe_secret("app/db")

        assert exc.value.code == "AccessDeniedException"
        assert exc.value.operation == "secretsmanager:DescribeSecret"

    def test_describe_secret(self, aws, clients):
        clients["secretsmanager"].describe_secret.return_value = {
            "Name": "app/db",
            "ARN": "arn:aws:secretsmanager:us-east-1:123:secret:app/db-x",
            "RotationEnabled": True,
        }

        meta = aws.describe_secret("app/db")

        assert meta.rotation_enabled is True
        assert meta.arn.endswith("app/db-x")

    def test_rotation_absent_is_unknown(self, aws, clients):
        """Should report rotation as unknown when the field is missing"""
        clients["secretsmanager"].describe_secret.return_value = {"Name": "app/db", "ARN": "arn"}

        assert aws.describe_secret("app/db").rotation_enabled is None

    def test_secret_value_only_boolean(self, aws, clients):
        """Should report readability without returning the payload"""
        clients["secretsmanager"].get_secret_value.return_value = {"SecretString": "s3cr3t"}

        assert aws.can_read_secret_value("app/db") is True

    def test_instance_mapping(self, aws, clients):
        clients["ec2"].describe_instances.return_value = {
            "Reservations": [{"Instances": [{
                "InstanceId": "i-1",
                "IamInstanceProfile": {"Arn": "arn:aws:iam::123:instance-profile/app"},
                "SecurityGroups": [{"GroupId": "sg-1"}, {"GroupId": "sg-2"}],
                "VpcId": "vpc-1",
            }]}],
        }

        instance = aws.describe_instance("i-1")

        assert instance.instance_profile_arn == "arn:aws:iam::123:instance-profile/app"
        assert instance.security_group_ids == ("sg-1", "sg-2")

    def test_instance_not_found(self, aws, clients):
        clients["ec2"].describe_instances.side_effect = client_error("InvalidInstanceID.NotFound")

        assert aws.describe_instance("i-404") is None

    def test_db_mapping(self, aws, clients):
        """Should map engine, endpoint port, public flag and groups"""
        clients["rds"].describe_db_instances.return_value = {
            "DBInstances": [{
                "DBInstanceIdentifier": "appdb",
                "Engine": "postgres",
                "Endpoint": {"Port": 5432},
                "PubliclyAccessible": False,
                "VpcSecurityGroups": [{"VpcSecurityGroupId": "sg-rds"}],
                "DBSubnetGroup": {"DBSubnetGroupName": "db-private"},
            }],
        }

        db = aws.describe_db_instance("appdb")

        assert db.engine == "postgres"
        assert db.port == 5432
        assert db.publicly_accessible is False
        assert db.security_group_ids == ("sg-rds",)
        assert db.subnet_group_name == "db-private"

    def test_ingress_rules(self, aws, clients):
        clients["ec2"].describe_security_groups.return_value = {
            "SecurityGroups": [{"IpPermissions": [{
                "IpProtocol": "tcp",
                "FromPort": 5432,
                "ToPort": 5432,
                "UserIdGroupPairs": [{"GroupId": "sg-ec2"}],
                "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                "Ipv6Ranges": [],
            }]}],
        }

        rules = aws.get_ingress_rules("sg-rds")

        assert len(rules) == 1
        assert rules[0].source_group_ids == ("sg-ec2",)
        assert rules[0].ipv4_ranges == ("0.0.0.0/0",)
        assert rules[0].covers_exactly(5432)

    def test_route_tables_paginated(self, aws, clients):
        """Should collect route tables across pages"""
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"RouteTables": [{"RouteTableId": "rtb-1", "Routes": [{"GatewayId": "local"}]}]},
            {"RouteTables": [{"RouteTableId": "rtb-2", "Routes": [{"GatewayId": "igw-9"}, {"NatGatewayId": "nat-1"}]}]},
        ]
        clients["ec2"].get_paginator.return_value = paginator

        tables = aws.get_route_tables_for_subnet("subnet-a")

        assert [t.route_table_id for t in tables] == ["rtb-1", "rtb-2"]
        assert tables[1].gateway_ids == ("igw-9",)
        paginator.paginate.assert_called_once_with(
            Filters=[{"Name": "association.subnet-id", "Values": ["subnet-a"]}]
        )

    def test_profile_roles(self, aws, clients):
        clients["iam"].get_instance_profile.return_value = {
            "InstanceProfile": {"Roles": [{"RoleName": "app-role"}]},
        }

        assert aws.get_instance_profile_roles("app") == ["app-role"]

    def test_subnet_group(self, aws, clients):
        clients["rds"].describe_db_subnet_groups.return_value = {
            "DBSubnetGroups": [{"Subnets": [{"SubnetIdentifier": "subnet-a"}, {"SubnetIdentifier": "subnet-b"}]}],
        }

        assert aws.get_subnet_group_subnets("db-private") == ["subnet-a", "subnet-b"]

    def test_clients_are_cached(self, aws, clients):
        """Should create each service client once"""
        clients["sts"].get_caller_identity.return_value = {"Arn": "arn:x", "Account": "1"}

        aws.get_caller_identity()
        aws.get_caller_identity()

        assert aws.session.client.call_count == 1

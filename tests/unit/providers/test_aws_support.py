"""Unit tests for the AWS client, error conversion and image resolution."""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from moto import mock_aws

from cloudcraft.config.schemas import AWSConfig
from cloudcraft.domain.core.exceptions import (
    ConfigurationError,
    ProviderError,
    ResourceNotFoundError,
    ValidationError,
)
from cloudcraft.providers.aws.aws_client import AWSClient
from cloudcraft.providers.aws.exceptions import convert_client_error, is_not_found
from cloudcraft.providers.aws.image_resolver import CANONICAL_OWNER_ID, UbuntuImageResolver


def client_error(code, message="", operation="DescribeInstances"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.mark.unit
@pytest.mark.aws
class TestConvertClientError:

    def test_not_found_codes(self):
        error = convert_client_error(client_error(
            "InvalidInstanceID.NotFound", "The instance ID 'i-0abc' does not exist"
        ))

        assert isinstance(error, ResourceNotFoundError)
        assert error.resource_type == "Instance"
        assert error.resource_id == "i-0abc"
        assert error.code == "InvalidInstanceID.NotFound"
        assert error.provider == "aws"

    @pytest.mark.parametrize("code,resource_type", [
        ("InvalidGroup.NotFound", "Group"),
        ("InvalidVpcID.NotFound", "Vpc"),
        ("InvalidKeyPair.NotFound", "KeyPair"),
        ("InvalidSpotInstanceRequestID.NotFound", "SpotInstanceRequest"),
    ])
    def test_resource_type_from_code(self, code, resource_type):
        assert convert_client_error(client_error(code)).resource_type == resource_type

    def test_malformed_is_validation_error(self):
        error = convert_client_error(client_error("InvalidInstanceID.Malformed", "Invalid id: 'nope'"))

        assert isinstance(error, ValidationError)

    def test_other_codes_are_provider_errors(self):
        error = convert_client_error(client_error("DependencyViolation", "vpc has dependencies"))

        assert type(error) is ProviderError
        assert error.code == "DependencyViolation"
        assert "vpc has dependencies" in str(error)

    def test_botocore_errors(self):
        error = convert_client_error(EndpointConnectionError(endpoint_url="https://ec2.example"))

        assert isinstance(error, ProviderError)

    def test_foreign_exceptions_are_not_converted(self):
        assert convert_client_error(KeyError("x")) is None

    def test_is_not_found(self):
        assert is_not_found(client_error("InvalidRouteTableID.NotFound"))
        assert not is_not_found(client_error("UnauthorizedOperation"))


@pytest.mark.unit
@pytest.mark.aws
class TestAWSClient:

    @mock_aws
    def test_builds_clients_with_standard_retries(self):
        client = AWSClient("eu-central-1", AWSConfig(request_retry_attempts=5, connection_timeout_ms=2000))

        assert client.ec2_client.meta.region_name == "eu-central-1"
        retries = client.ec2_client.meta.config.retries
        assert retries["mode"] == "standard"
        assert retries.get("max_attempts") == 5 or retries.get("total_max_attempts") == 6
        assert client.config.connect_timeout == 2
        assert client.ssm_client.meta.service_model.service_name == "ssm"

    @mock_aws
    def test_validate_credentials(self):
        AWSClient("eu-central-1", AWSConfig(validate_credentials=True))

    def test_failed_credential_validation(self):
        session = Mock()
        session.client.return_value.get_caller_identity.side_effect = client_error(
            "InvalidClientTokenId", "The security token included in the request is invalid", "GetCallerIdentity"
        )

        with pytest.raises(ConfigurationError, match="validate AWS credentials"):
            AWSClient("eu-central-1", AWSConfig(validate_credentials=True), session=session)

    def test_custom_endpoint(self):
        session = Mock()

        AWSClient("eu-central-1", AWSConfig(endpoint_url="http://localhost:4566"), session=session)

        ec2_call = session.client.call_args_list[0]
        assert ec2_call[0][0] == "ec2"
        assert ec2_call[1]["endpoint_url"] == "http://localhost:4566"


@pytest.mark.unit
@pytest.mark.aws
class TestUbuntuImageResolver:

    def setup_method(self):
        self.ec2 = Mock()
        self.ssm = Mock()

    def test_picks_newest_image_for_architecture(self):
        self.ec2.describe_images.return_value = {"Images": [
            {"ImageId": "ami-old", "CreationDate": "2023-01-01T00:00:00.000Z"},
            {"ImageId": "ami-new", "CreationDate": "2024-03-01T00:00:00.000Z"},
        ]}

        assert UbuntuImageResolver(self.ec2).resolve(arm=True) == "ami-new"

        kwargs = self.ec2.describe_images.call_args[1]
        assert kwargs["Owners"] == [CANONICAL_OWNER_ID]
        assert {"Name": "architecture", "Values": ["arm64"]} in kwargs["Filters"]

    def test_no_matching_image(self):
        self.ec2.describe_images.return_value = {"Images": []}

        with pytest.raises(ResourceNotFoundError):
            UbuntuImageResolver(self.ec2).resolve()

    def test_ami_override(self):
        assert UbuntuImageResolver(self.ec2, override="ami-0123").resolve() == "ami-0123"
        self.ec2.describe_images.assert_not_called()

    def test_ssm_override(self):
        self.ssm.get_parameter.return_value = {"Parameter": {"Value": "ami-from-ssm"}}
        path = "/aws/service/canonical/ubuntu/server/22.04/stable/current/amd64/hvm/ebs-gp2/ami-id"

        assert UbuntuImageResolver(self.ec2, self.ssm, override=path).resolve() == "ami-from-ssm"
        self.ssm.get_parameter.assert_called_once_with(Name=path)

    def test_invalid_override(self):
        with pytest.raises(ValidationError, match="Invalid image ID format"):
            UbuntuImageResolver(self.ec2, self.ssm, override="ubuntu-latest").resolve()

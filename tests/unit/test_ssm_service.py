"""Tests for the Parameter Store secret reader."""

from typing import Generator
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

from staybroker.services.ssm_service import SSMService, SSMServiceError, parameter_path

SECRET_NAME = "/staybroker/dev/stripe/secret_key"


@pytest.fixture
def ssm(aws_credentials: None) -> Generator[SSMService, None, None]:
    with mock_aws():
        client = boto3.client("ssm", region_name="eu-west-1")
        client.put_parameter(Name=SECRET_NAME, Value="sk_test_123", Type="SecureString")
        yield SSMService(client=client)


def test_parameter_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """Names are placed under the environment's path."""
    monkeypatch.setenv("ENVIRONMENT", "prod")

    assert parameter_path("stripe/secret_key") == "/staybroker/prod/stripe/secret_key"
    assert parameter_path("/stripe/secret_key", "dev") == SECRET_NAME


def test_reads_decrypted_secret(ssm: SSMService) -> None:
    """SecureString values come back decrypted."""
    assert ssm.get_secret("stripe/secret_key", "dev") == "sk_test_123"


def test_values_are_cached() -> None:
    """A parameter is fetched from SSM once."""
    client = MagicMock()
    client.get_parameter.return_value = {"Parameter": {"Value": "v1"}}
    service = SSMService(client=client)

    service.get_parameter(SECRET_NAME)
    service.get_parameter(SECRET_NAME)
    assert client.get_parameter.call_count == 1

    service.get_parameter(SECRET_NAME, use_cache=False)
    assert client.get_parameter.call_count == 2

    service.clear_cache()
    service.get_parameter(SECRET_NAME)
    assert client.get_parameter.call_count == 3


def test_missing_parameter(ssm: SSMService) -> None:
    """A missing parameter names the full path."""
    with pytest.raises(SSMServiceError) as exc_info:
        ssm.get_secret("stripe/missing", "dev")

    assert exc_info.value.name == "/staybroker/dev/stripe/missing"
    assert exc_info.value.reason == "not found"

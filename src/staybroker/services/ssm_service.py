"""Secrets from AWS SSM Parameter Store.

Parameters live under ``/staybroker/<environment>/``. Values are decrypted on
first read and kept for the lifetime of the process.
"""

import os
import threading
from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import ClientError

from ..utils.logging import get_logger

logger = get_logger(__name__)

PARAMETER_ROOT = "/staybroker"

_FAILURE_REASONS = {
    "ParameterNotFound": "not found",
    "AccessDeniedException": "access denied, check ssm:GetParameter on the role",
}


class SSMServiceError(Exception):
    """A secret could not be read from Parameter Store."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"SSM parameter {name}: {reason}")
        self.name = name
        self.reason = reason


def parameter_path(key: str, environment: str | None = None) -> str:
    """Full parameter name for a key such as ``stripe/secret_key``."""
    env = environment or os.getenv("ENVIRONMENT", "dev")
    return f"{PARAMETER_ROOT}/{env}/{key.lstrip('/')}"


class SSMService:
    """Decrypting reader for SecureString parameters with an in-process cache."""

    def __init__(self, client: Any = None) -> None:
        self._client = client or boto3.client("ssm")
        self._values: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Read a parameter by its full name.

        Raises:
            SSMServiceError: The parameter is missing or unreadable
        """
        if use_cache:
            with self._lock:
                cached = self._values.get(name)
            if cached is not None:
                return cached

        try:
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error("SSM read failed for %s (code: %s)", name, code)
            raise SSMServiceError(name, _FAILURE_REASONS.get(code, code)) from e

        value = response["Parameter"]["Value"]
        with self._lock:
            self._values[name] = value
        logger.info("Loaded SSM parameter %s", name)
        return value

    def get_secret(self, key: str, environment: str | None = None) -> str:
        return self.get_parameter(parameter_path(key, environment))

    def clear_cache(self) -> None:
        with self._lock:
            self._values.clear()


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    return SSMService()


def reset_ssm_service() -> None:
    """Forget the shared instance and its cached values (tests)."""
    get_ssm_service.cache_clear()

"""
AWS Secrets Manager lookup for database credentials.
"""
import json
import logging
from typing import Any, Dict

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


def get_secret(secret_name: str, region_name: str = "us-east-1") -> Dict[str, Any]:
    """
    Fetch a JSON secret and return it as a dict.

    Args:
        secret_name: Name/path of the secret (e.g. study-sprint/db)
        region_name: AWS region

    Raises:
        ClientError: Secret missing or not readable
        ValueError: Secret is not a JSON object
    """
    client = boto3.session.Session().client(
        service_name="secretsmanager",
        region_name=region_name,
    )
    try:
        response = client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        logger.error("Could not read secret %s: %s", secret_name, e.response["Error"]["Code"])
        raise
    data = json.loads(response["SecretString"])
    if not isinstance(data, dict):
        raise ValueError(f"Secret {secret_name} is not a JSON object")
    logger.info("Loaded secret %s", secret_name)
    return data

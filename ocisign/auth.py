"""Registry credentials

Registries hosted on AWS ECR accept short-lived credentials derived from an
ECR authorization token. The token is base64 of "AWS:<password>".
"""
import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ocisign.errors import CredentialError

logger = logging.getLogger(__name__)

ECR_USERNAME = "AWS"
ECR_HOST_RE = re.compile(
    r"(?P<account>[0-9]{12})\.dkr\.ecr(?:-fips)?\.(?P<region>[a-z0-9-]+)\.amazonaws\.com(?:\.cn)?"
)


@dataclass(frozen=True, slots=True)
class Credential:
    username: str
    password: str = ""

    def __repr__(self):
        return f"Credential(username={self.username!r}, password='***')"


CredentialProvider = Callable[[str], Credential]


def normalize_token(token: str) -> str:
    """Decode an ECR authorization token into the registry password"""
    try:
        decoded = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, ValueError) as e:
        raise CredentialError(f"malformed authorization token: {e}") from e
    return decoded.removeprefix(f"{ECR_USERNAME}:")


def region_from_host(registry: str) -> str | None:
    """Return the AWS region encoded in an ECR registry host name"""
    match = ECR_HOST_RE.fullmatch(registry.split(":", 1)[0])
    if match is None:
        return None
    return match["region"]


class StaticCredentialProvider:
    """Hand out the same credential for every registry."""

    def __init__(self, username: str, password: str):
        self.credential = Credential(username=username, password=password)

    def __call__(self, registry: str) -> Credential:
        return self.credential


class ECRCredentialProvider:
    """Exchange the AWS identity for ECR registry credentials

    :param region: AWS region, defaults to the region in the registry host name.
    :param profile: AWS shared config profile, defaults to boto3's resolution.
    """

    def __init__(self, region: str | None = None, profile: str | None = None):
        self.region = region
        self.profile = profile

    def __call__(self, registry: str) -> Credential:
        region = self.region or region_from_host(registry)
        logger.debug("Requesting ECR authorization token for %s (%s)", registry, region)
        try:
            session = boto3.Session(profile_name=self.profile, region_name=region)
            response = session.client("ecr").get_authorization_token()
        except (BotoCoreError, ClientError) as e:
            raise CredentialError(f"retrieving ECR authorization token: {e}") from e

        authorization_data = response.get("authorizationData") or []
        if not authorization_data:
            raise CredentialError("ECR returned no authorization data")
        password = normalize_token(authorization_data[0]["authorizationToken"])
        return Credential(username=ECR_USERNAME, password=password)

"""Cluster credentials — the request body of the aggregator call.

Learn: Users usually paste a Proxmox API token rather than a separate
username and secret. Two token shapes exist in the wild:

    PVEAPIToken=root@pam!dashboard=0f1e...   → user "root@pam!dashboard"
    PVEAPIToken=root@pam=0f1e...             → user "root@pam"

For the first shape the secret starts after the LAST "=", for the second
after the FIRST one. Explicit username/secret always win over the token.
"""

from typing import Optional

from pydantic import AnyHttpUrl, BaseModel, TypeAdapter, ValidationError

API_TOKEN_PREFIX = "PVEAPIToken="

_http_url = TypeAdapter(AnyHttpUrl)


class ClusterCredentials(BaseModel):
    url: str
    username: str
    secret: str
    node: str = "pve"

    model_config = {"frozen": True}

    @classmethod
    def from_api_token(
        cls,
        url: str,
        token: str,
        *,
        node: str = "pve",
        username: str = "",
        secret: str = "",
    ) -> "ClusterCredentials":
        parsed_user, parsed_secret = parse_api_token(token)
        return cls(
            url=url,
            username=username or parsed_user,
            secret=secret or parsed_secret,
            node=node or "pve",
        )


def parse_api_token(token: str) -> tuple[str, str]:
    """Split a PVEAPIToken string into (username, secret).

    Returns ("", "") for anything that doesn't carry the prefix.
    """
    if not token or not token.startswith(API_TOKEN_PREFIX):
        return "", ""
    body = token[len(API_TOKEN_PREFIX):]
    if "!" in body and "=" in body:
        idx = body.rfind("=")
        if idx > 0:
            return body[:idx], body[idx + 1:]
        return "", ""
    if "=" in body:
        user, _, secret = body.partition("=")
        return user, secret
    return "", ""


def validate_cluster_config(
    url: Optional[str], token: Optional[str], node: Optional[str]
) -> list[str]:
    """Return human-readable problems with a cluster configuration (empty if OK)."""
    errors: list[str] = []

    if not url:
        errors.append("Cluster URL is required")
    else:
        try:
            _http_url.validate_python(url)
        except ValidationError:
            errors.append("Cluster URL is not valid")

    if not token:
        errors.append("API token is required")
    elif not token.startswith(API_TOKEN_PREFIX):
        errors.append(f'API token must start with "{API_TOKEN_PREFIX}"')

    if not node:
        errors.append("Default node is required")

    return errors

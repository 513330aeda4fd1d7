"""EC2 instance metadata client for public address discovery."""
from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field

import requests

logger = logging.getLogger(__name__)

TOKEN_PATH = "/latest/api/token"
PUBLIC_IPV4_PATH = "/latest/meta-data/public-ipv4"
TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
TOKEN_HEADER = "X-aws-ec2-metadata-token"


@dataclass(slots=True)
class MetadataClient:
    """Query the link-local metadata service (IMDSv2 with IMDSv1 fallback)."""

    endpoint: str = "http://169.254.169.254"
    timeout: float = 2.0
    session: requests.Session = field(default_factory=requests.Session)

    def token(self) -> str | None:
        """Return an IMDSv2 session token, or ``None`` when unavailable."""
        try:
            response = self.session.put(
                f"{self.endpoint}{TOKEN_PATH}",
                headers={TOKEN_TTL_HEADER: "21600"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.debug("IMDSv2 token request failed: %s", exc)
            return None
        if response.status_code != 200 or not response.text.strip():
            return None
        return response.text.strip()

    def public_ipv4(self) -> str | None:
        """Return the instance's public IPv4 address, or ``None``.

        Only a syntactically valid IPv4 dotted quad is accepted; error pages
        or empty bodies yield ``None``.
        """
        headers: dict[str, str] = {}
        token = self.token()
        if token:
            headers[TOKEN_HEADER] = token
        try:
            response = self.session.get(
                f"{self.endpoint}{PUBLIC_IPV4_PATH}",
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.debug("Public IPv4 lookup failed: %s", exc)
            return None
        if response.status_code != 200:
            return None
        candidate = response.text.strip()
        try:
            address = ipaddress.ip_address(candidate)
        except ValueError:
            return None
        if address.version != 4:
            return None
        return str(address)


def resolve_server_name(explicit: str | None, client: MetadataClient | None) -> str:
    """Return the vhost ``server_name``: explicit value, discovered address, else ``_``."""
    if explicit and explicit.strip():
        return explicit.strip()
    if client is not None:
        discovered = client.public_ipv4()
        if discovered:
            return discovered
    return "_"


__all__ = ["MetadataClient", "resolve_server_name"]

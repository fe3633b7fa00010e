import ipaddress
import socket
from typing import Callable, List, Tuple

from app.features.scan.exceptions import ForbiddenTargetError, InvalidTargetError
from app.features.scan.schemas.scan import ResolvedAddress
from app.platform.logger import get_logger
from app.platform.utils.url_validator import extract_hostname, validate_url

logger = get_logger(__name__)

BLOCKED_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

Resolver = Callable[..., List[Tuple]]


class TargetValidator:
    """
    SSRF guard run before any browser is launched.

    The resolver is injectable so tests can answer DNS without the network;
    it must behave like ``socket.getaddrinfo``.
    """

    def __init__(self, resolver: Resolver = socket.getaddrinfo):
        self._resolver = resolver

    @staticmethod
    def is_private_address(address: str) -> bool:
        try:
            ip = ipaddress.ip_address(address.split("%", 1)[0])
        except ValueError:
            return False

        if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
            ip = ip.ipv4_mapped

        return any(ip.version == net.version and ip in net for net in BLOCKED_NETWORKS)

    def resolve(self, hostname: str) -> List[str]:
        try:
            infos = self._resolver(hostname, None, 0, socket.SOCK_STREAM)
        except (socket.gaierror, UnicodeError) as e:
            logger.warning(f"DNS resolution failed for {hostname}: {e}")
            raise InvalidTargetError("Invalid or unreachable domain.") from e

        addresses = []
        for info in infos:
            address = info[4][0]
            if address not in addresses:
                addresses.append(address)

        if not addresses:
            raise InvalidTargetError("Invalid or unreachable domain.")
        return addresses

    def validate(self, url: str) -> ResolvedAddress:
        """
        Resolve the target and reject internal destinations.

        Raises:
            InvalidTargetError: malformed URL or unresolvable hostname
            ForbiddenTargetError: any resolved address is private/loopback/link-local
        """
        is_valid, normalized_url, error_message = validate_url(url)
        if not is_valid:
            raise InvalidTargetError(f"Invalid URL: {error_message}")

        hostname = extract_hostname(normalized_url)
        if not hostname:
            raise InvalidTargetError("Invalid URL: missing domain")

        addresses = self.resolve(hostname)
        forbidden = [address for address in addresses if self.is_private_address(address)]
        if forbidden:
            logger.warning(f"Rejected scan of {hostname}: resolves to internal address {forbidden[0]}")
            raise ForbiddenTargetError(
                "Scanning internal/private IP addresses is not allowed for security reasons."
            )

        return ResolvedAddress(url=normalized_url, hostname=hostname, addresses=addresses)

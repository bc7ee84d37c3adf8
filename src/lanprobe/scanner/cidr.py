# LanProbe Scanner - Range Resolution
"""
Turns a scan target into an ordered list of host addresses.
Resolution never raises: callers get a RangeResult carrying either the
host list or a message suitable for showing to the operator.
"""

import logging
import re

from ..models import AddressRange, RangeResult

logger = logging.getLogger("lanprobe.scanner.cidr")

DEFAULT_MAX_HOSTS = 1024

_OCTETS_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
_SUBNET_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}$")
_FULL_MASK = 0xFFFFFFFF


def ip_to_int(ip: str) -> int:
    """Convert a dotted-quad to a 32-bit unsigned integer."""
    value = 0
    for part in ip.split("."):
        value = (value << 8) + int(part)
    return value & _FULL_MASK


def int_to_ip(value: int) -> str:
    """Convert a 32-bit unsigned integer to a dotted-quad."""
    return ".".join(str((value >> shift) & 0xFF) for shift in (24, 16, 8, 0))


def ip_sort_key(ip: str) -> int:
    """Numeric ordering key, most-significant octet first."""
    return ip_to_int(ip)


def is_ipv4(ip: str) -> bool:
    """True for a dotted-quad whose octets are all 0-255."""
    if not isinstance(ip, str) or not _OCTETS_RE.match(ip):
        return False
    return all(int(part) <= 255 for part in ip.split("."))


def _error(message: str) -> RangeResult:
    logger.debug(f"Range rejected: {message}")
    return RangeResult(success=False, error=message)


def resolve_cidr(cidr: str, max_hosts: int = DEFAULT_MAX_HOSTS) -> RangeResult:
    """
    Resolve a CIDR string into the host addresses to probe.

    /32 yields the address itself, /31 yields both addresses of the
    point-to-point link, anything wider excludes the network and
    broadcast addresses.

    Args:
        cidr: Target such as "192.168.1.0/24"
        max_hosts: Ceiling on the block size (2^(32-prefix))

    Returns:
        RangeResult with hosts in ascending numeric order, or an error
    """
    parts = (cidr or "").strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return _error("Invalid CIDR format. Expected format: X.X.X.X/Y")

    ip, mask_str = parts[0].strip(), parts[1].strip()

    if not _OCTETS_RE.match(ip):
        return _error("Invalid IP address format in CIDR.")
    if any(int(octet) > 255 for octet in ip.split(".")):
        return _error("Invalid IP address in CIDR. Each octet must be between 0 and 255.")

    if not mask_str.isdigit() or not 1 <= int(mask_str) <= 32:
        return _error("Invalid CIDR mask. Must be between 1 and 32.")
    prefix = int(mask_str)

    total = 2 ** (32 - prefix)
    if total > max_hosts:
        ceiling_prefix = 32 - (max_hosts.bit_length() - 1)
        return _error(
            f"Network size is too large ({total} addresses). "
            f"Maximum allowed is {max_hosts} (a /{ceiling_prefix} network)."
        )

    ip_long = ip_to_int(ip)
    mask = (_FULL_MASK << (32 - prefix)) & _FULL_MASK
    network = ip_long & mask
    broadcast = network | (~mask & _FULL_MASK)

    address_range = AddressRange(network_address=int_to_ip(network), prefix_length=prefix)

    if prefix == 32:
        hosts = [int_to_ip(ip_long)]
    elif prefix == 31:
        hosts = [int_to_ip(network), int_to_ip(broadcast)]
    else:
        hosts = [int_to_ip(i) for i in range(network + 1, broadcast)]

    logger.debug(f"Resolved {cidr} to {len(hosts)} hosts in {address_range}")
    return RangeResult(success=True, hosts=hosts, range=address_range)


def resolve_octet_range(subnet: str, start: int, end: int) -> RangeResult:
    """
    Resolve the "X.X.X" + last-octet range form.

    Args:
        subnet: First three octets, e.g. "192.168.1"
        start: First last-octet value (inclusive)
        end: Last last-octet value (inclusive)
    """
    subnet = (subnet or "").strip()
    if not _SUBNET_RE.match(subnet) or any(int(o) > 255 for o in subnet.split(".")):
        return _error("Invalid subnet format. Expected format: X.X.X")

    if not (0 <= start <= 255 and 0 <= end <= 255 and start <= end):
        return _error(
            "Invalid IP range. Start and end must be between 0 and 255, "
            "and start must not exceed end."
        )

    return RangeResult(success=True, hosts=[f"{subnet}.{i}" for i in range(start, end + 1)])

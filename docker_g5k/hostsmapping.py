"""Static hosts lookup table shared by every node of the cluster."""

import ipaddress
import shlex
import threading

from docker_g5k.exceptions import ProvisioningError, RegistrationError
from docker_g5k.logging_config import get_logger

logger = get_logger(__name__)

HOSTS_FILE = "/etc/hosts"


class HostsLookupTable:
    """Thread-safe mapping of machine names to addresses.

    Addresses are either IP literals or Grid'5000 hostnames, the latter being
    resolved on the target host when the table is written to it.
    """

    def __init__(self, entries: dict[str, str] | None = None):
        self._lock = threading.Lock()
        self._entries = dict(entries or {})

    def __repr__(self) -> str:
        return f"HostsLookupTable({self.snapshot()!r})"

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._entries

    def get(self, name: str) -> str | None:
        with self._lock:
            return self._entries.get(name)

    def register(self, name: str, address: str) -> None:
        """Record the address of a machine, replacing any previous one."""
        with self._lock:
            previous = self._entries.get(name)
            self._entries[name] = address
        if previous and previous != address:
            logger.debug(f"Lookup table entry {name} updated: {previous} -> {address}")

    def snapshot(self) -> dict[str, str]:
        """Return a consistent copy of the table."""
        with self._lock:
            return dict(self._entries)


def _is_ip_address(address: str) -> bool:
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def hosts_entry_command(name: str, address: str) -> str:
    """Build the shell command appending one entry to the hosts file if missing.

    The name is looked up in the hostname fields only. A hostname address that
    does not resolve on the target fails the command, nothing is written.
    """
    quoted_name = shlex.quote(name)
    if _is_ip_address(address):
        resolve = f"ip={shlex.quote(address)}"
    else:
        error = shlex.quote(f"cannot resolve {address}")
        resolve = (
            f"ip=$(getent hosts {shlex.quote(address)} | awk '{{print $1}}' | head -n 1) && "
            f'{{ [ -n "$ip" ] || {{ echo {error} >&2; exit 1; }}; }}'
        )

    has_name = (
        f"awk -v n={quoted_name} "
        "'$1 !~ /^#/ { for (i = 2; i <= NF; i++) if ($i == n) found = 1 } END { exit !found }' "
        f"{HOSTS_FILE}"
    )
    return (
        f"{resolve} && {{ {has_name} "
        f'|| echo "$ip {name}" | sudo tee -a {HOSTS_FILE} > /dev/null; }}'
    )


def add_cluster_hosts_mapping(host, table: HostsLookupTable) -> None:
    """Register the host in the lookup table and write the table to the host.

    Raises:
        RegistrationError: If the host address cannot be resolved or the hosts file
            cannot be written
    """
    try:
        address = host.get_ip()
    except ProvisioningError as e:
        raise RegistrationError(f"Failed to get the address of {host.name}", e.message) from e

    table.register(host.name, address)
    entries = table.snapshot()
    logger.debug(f"[{host.name}] writing {len(entries)} entries to {HOSTS_FILE}")

    command = " && ".join(
        f"( {hosts_entry_command(name, addr)} )" for name, addr in sorted(entries.items())
    )
    try:
        host.run_command(command)
    except ProvisioningError as e:
        raise RegistrationError(
            f"Failed to write the cluster hosts mapping on {host.name}", e.details
        ) from e

    logger.info(f"[{host.name}] registered as {address} in the cluster lookup table")

"""Weave Net overlay network and Weave Discovery."""

import shlex

from docker_g5k.exceptions import ProvisioningError, WeaveError
from docker_g5k.logging_config import get_logger

logger = get_logger(__name__)

WEAVE_URL = "https://git.io/weave"
WEAVE_DISCOVERY_URL = "https://git.io/weave-discovery"
INSTALL_DIR = "/usr/local/bin"


def _install_script(url: str, name: str) -> str:
    target = f"{INSTALL_DIR}/{name}"
    return f"sudo curl -sSL {url} -o {target} && sudo chmod a+x {target}"


def run_weave_net(host) -> None:
    """Install Weave Net on the host and launch the router.

    Raises:
        WeaveError: If Weave Net cannot be installed or launched
    """
    command = f"{_install_script(WEAVE_URL, 'weave')} && sudo weave launch"
    try:
        host.run_command(command)
    except ProvisioningError as e:
        raise WeaveError(f"Failed to run Weave Net on {host.name}", e.details) from e

    logger.info(f"[{host.name}] Weave Net launched")


def run_weave_discovery(host, discovery: str) -> None:
    """Join the Weave router of the host to the discovery backend.

    Weave Net must already be running on the host.

    Raises:
        WeaveError: If Weave Discovery cannot be installed or joined
    """
    command = (
        f"{_install_script(WEAVE_DISCOVERY_URL, 'discovery')} && "
        f"sudo discovery join --advertise-router {shlex.quote(host.name)} {shlex.quote(discovery)}"
    )
    try:
        host.run_command(command)
    except ProvisioningError as e:
        raise WeaveError(f"Failed to run Weave Discovery on {host.name}", e.details) from e

    logger.info(f"[{host.name}] Weave Discovery joined {discovery}")

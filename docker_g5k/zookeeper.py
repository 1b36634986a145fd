"""Zookeeper cluster storage for Swarm standalone discovery and Engine cluster-store."""

from docker_g5k.exceptions import ProvisioningError, ZookeeperError
from docker_g5k.logging_config import get_logger

logger = get_logger(__name__)

ZOOKEEPER_IMAGE = "zookeeper:3.4"
CLIENT_PORT = 2181
PEER_PORT = 2888
ELECTION_PORT = 3888


def discovery_url(master_nodes: list[str] | tuple[str, ...], path: str = "swarm") -> str:
    """Return the zk:// discovery URL served by the Zookeeper ensemble."""
    if not master_nodes:
        raise ZookeeperError("Zookeeper discovery needs at least one master node")
    servers = ",".join(f"{node}:{CLIENT_PORT}" for node in master_nodes)
    return f"zk://{servers}/{path}"


def zookeeper_servers(master_nodes: list[str] | tuple[str, ...]) -> str:
    """Return the ZOO_SERVERS value describing the whole ensemble."""
    return " ".join(
        f"server.{i}={node}:{PEER_PORT}:{ELECTION_PORT}"
        for i, node in enumerate(master_nodes, start=1)
    )


def start_cluster_storage(host, master_nodes: list[str] | tuple[str, ...]) -> None:
    """Start a Zookeeper ensemble member on the host.

    Failures are logged and never raised: a master without storage still joins
    the cluster.
    """
    if host.name not in master_nodes:
        logger.error(f"[{host.name}] is not a master node, not starting Zookeeper")
        return

    my_id = list(master_nodes).index(host.name) + 1
    command = (
        "docker run -d --restart=always --net=host --name zookeeper "
        f"-e ZOO_MY_ID={my_id} "
        f'-e ZOO_SERVERS="{zookeeper_servers(master_nodes)}" '
        f"{ZOOKEEPER_IMAGE}"
    )

    try:
        host.run_command(command)
    except ProvisioningError as e:
        logger.error(f"[{host.name}] failed to start Zookeeper: {e.message}")
        if e.details:
            logger.debug(e.details)
        return

    logger.info(f"[{host.name}] Zookeeper started (id {my_id} of {len(master_nodes)})")

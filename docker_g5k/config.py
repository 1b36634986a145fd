"""YAML cluster file loading and saving."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from docker_g5k import zookeeper
from docker_g5k.cluster import Cluster
from docker_g5k.exceptions import ConfigurationError, ZookeeperError
from docker_g5k.logging_config import get_logger
from docker_g5k.models.cluster import ClusterConfig

logger = get_logger(__name__)

ZOOKEEPER_DISCOVERY = "zookeeper"


class Reservation(BaseModel):
    """Nodes of one Grid'5000 job."""

    site: str
    job_id: int = Field(ge=0)
    nodes: list[str]
    engine_opt: list[str] = Field(default_factory=list)
    engine_label: list[str] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def validate_nodes(cls, v: list[str]) -> list[str]:
        """Validate the reservation has nodes."""
        if not v:
            raise ValueError("a reservation must contain at least one node")
        return v


class ClusterFile(BaseModel):
    """Top-level structure of a cluster file."""

    cluster: dict
    reservations: list[Reservation]


def _machine_names(reservations: list[Reservation]) -> list[list[str]]:
    counters: dict[str, int] = {}
    names = []
    for reservation in reservations:
        reservation_names = []
        for _ in reservation.nodes:
            index = counters.get(reservation.site, 0)
            counters[reservation.site] = index + 1
            reservation_names.append(f"{reservation.site}-{index}")
        names.append(reservation_names)
    return names


def build_cluster(data: dict, machine_client=None) -> Cluster:
    """Build a cluster from the parsed content of a cluster file.

    Defaults applied before validation:
    - Swarm master nodes default to the first machine when clustering is enabled
    - a 'zookeeper' standalone discovery resolves to the Zookeeper ensemble of the masters

    Raises:
        ConfigurationError: If the content is invalid
    """
    try:
        cluster_file = ClusterFile.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError("Invalid cluster file", str(e)) from e

    names = _machine_names(cluster_file.reservations)
    settings = dict(cluster_file.cluster)
    if "ssh_key_pair" in settings and settings["ssh_key_pair"]:
        settings["ssh_key_pair"] = str(Path(settings["ssh_key_pair"]).expanduser())

    clustering_enabled = any(
        settings.get(key) is not None for key in ("swarm_standalone", "swarm_mode", "clustering")
    )
    if clustering_enabled and not settings.get("swarm_master_nodes") and names:
        settings["swarm_master_nodes"] = [names[0][0]]
        logger.debug(f"Swarm master defaults to {names[0][0]}")

    standalone = settings.get("swarm_standalone")
    if isinstance(standalone, dict) and standalone.get("discovery") == ZOOKEEPER_DISCOVERY:
        masters = settings.get("swarm_master_nodes") or []
        try:
            discovery = zookeeper.discovery_url(masters)
        except ZookeeperError as e:
            raise ConfigurationError("Cannot use Zookeeper discovery", e.message) from e
        settings["swarm_standalone"] = {**standalone, "discovery": discovery}

    if machine_client is not None:
        settings["machine_client"] = machine_client

    try:
        config = ClusterConfig.model_validate(settings)
    except ValidationError as e:
        raise ConfigurationError("Invalid cluster configuration", str(e)) from e

    cluster = Cluster(config)
    try:
        for reservation, reservation_names in zip(cluster_file.reservations, names):
            for node_name, machine_name in zip(reservation.nodes, reservation_names):
                cluster.add_node(
                    reservation.site,
                    reservation.job_id,
                    node_name,
                    engine_opt=reservation.engine_opt,
                    engine_label=reservation.engine_label,
                    machine_name=machine_name,
                )
    except ValidationError as e:
        raise ConfigurationError("Invalid node definition", str(e)) from e

    cluster.validate()
    return cluster


def load_cluster_file(path: str | Path, machine_client=None) -> Cluster:
    """Load and validate a cluster file.

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    path = Path(path)
    logger.debug(f"Reading cluster file: {path}")

    if not path.exists():
        raise ConfigurationError(
            f"Cluster file not found: {path}",
            f"Expected location: {path.absolute()}",
        )

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in cluster file: {path}", str(e)) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Cluster file is empty or malformed: {path}",
            "The file must contain 'cluster' and 'reservations' sections",
        )

    return build_cluster(data, machine_client=machine_client)


def dump_cluster(cluster: Cluster) -> dict:
    """Convert a cluster to the cluster file structure."""
    config = cluster.config
    settings = config.model_dump(
        mode="json", exclude={"hosts_lookup_table", "machine_client", "clustering"}
    )
    if config.swarm_standalone is not None:
        settings["swarm_standalone"] = config.swarm_standalone.model_dump(
            mode="json", exclude={"mode"}
        )
    elif config.swarm_mode is not None:
        settings["swarm_mode"] = config.swarm_mode.model_dump(mode="json", exclude={"mode"})

    reservations: list[dict] = []
    for node in cluster.nodes:
        last = reservations[-1] if reservations else None
        if (
            last is not None
            and last["site"] == node.g5k_site
            and last["job_id"] == node.g5k_job_id
            and last["engine_opt"] == node.engine_opt
            and last["engine_label"] == node.engine_label
        ):
            last["nodes"].append(node.node_name)
            continue
        reservations.append(
            {
                "site": node.g5k_site,
                "job_id": node.g5k_job_id,
                "nodes": [node.node_name],
                "engine_opt": list(node.engine_opt),
                "engine_label": list(node.engine_label),
            }
        )

    return {"cluster": settings, "reservations": reservations}


def save_cluster_file(cluster: Cluster, path: str | Path) -> None:
    """Save a cluster to a YAML cluster file.

    Raises:
        ConfigurationError: If the file cannot be written
    """
    try:
        with open(path, "w") as f:
            yaml.dump(dump_cluster(cluster), f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Failed to write cluster file: {path}", str(e)) from e

"""Data models for cluster-wide configuration."""

from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from docker_g5k.hostsmapping import HostsLookupTable
from docker_g5k.machine import DockerMachineClient
from docker_g5k.swarm import SwarmModeConfig, SwarmStandaloneConfig

ClusteringMode = Annotated[
    SwarmStandaloneConfig | SwarmModeConfig,
    Field(discriminator="mode"),
]


class ClusterConfig(BaseModel):
    """Cluster configuration shared by every node.

    Built once before any node is provisioned and read-only afterwards.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    g5k_username: str
    g5k_password: str
    g5k_image: str = "jessie-x64-min"
    g5k_walltime: str = "1:00:00"
    ssh_key_pair: str
    engine_install_url: str = "https://get.docker.com"
    swarm_master_nodes: tuple[str, ...] = ()
    hosts_lookup_table: HostsLookupTable = Field(default_factory=HostsLookupTable)
    use_zookeeper_cluster_storage: bool = False
    clustering: ClusteringMode | None = None
    weave_networking_enabled: bool = False
    machine_client: Any = Field(default_factory=DockerMachineClient, repr=False, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def merge_legacy_clustering_keys(cls, data: Any) -> Any:
        """Accept 'swarm_standalone' / 'swarm_mode' in place of 'clustering'.

        At most one clustering mode can be configured.
        """
        if not isinstance(data, dict):
            return data

        data = dict(data)
        standalone = data.pop("swarm_standalone", None)
        swarm_mode = data.pop("swarm_mode", None)
        given = [v for v in (standalone, swarm_mode, data.get("clustering")) if v is not None]
        if len(given) > 1:
            raise ValueError(
                "Swarm standalone and Swarm mode are mutually exclusive, configure only one"
            )

        if standalone is not None:
            data["clustering"] = _with_mode(standalone, "standalone")
        elif swarm_mode is not None:
            data["clustering"] = _with_mode(swarm_mode, "swarm-mode")
        return data

    @field_validator("g5k_username", "g5k_password", "ssh_key_pair")
    @classmethod
    def validate_not_empty(cls, v: str, info) -> str:
        if not v:
            raise ValueError(f"{info.field_name} cannot be empty")
        return v

    @field_validator("g5k_walltime")
    @classmethod
    def validate_walltime(cls, v: str) -> str:
        """Validate walltime follows the OAR format (hh:mm:ss)."""
        parts = v.split(":")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError(f"g5k_walltime '{v}' must follow the format hh:mm:ss")
        return v

    @field_validator("swarm_master_nodes")
    @classmethod
    def validate_master_nodes(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Validate master node names are unique."""
        if len(set(v)) != len(v):
            raise ValueError("swarm_master_nodes cannot contain duplicates")
        return v

    @model_validator(mode="after")
    def validate_clustering_features(self) -> "ClusterConfig":
        """Validate features depending on Swarm standalone."""
        if self.use_zookeeper_cluster_storage and not self.is_swarm_standalone:
            raise ValueError("Zookeeper cluster storage requires Swarm standalone")
        if self.weave_networking_enabled and not self.is_swarm_standalone:
            raise ValueError("Weave networking requires Swarm standalone")
        return self

    @property
    def is_swarm_standalone(self) -> bool:
        return isinstance(self.clustering, SwarmStandaloneConfig)

    @property
    def is_swarm_mode(self) -> bool:
        return isinstance(self.clustering, SwarmModeConfig)

    @property
    def swarm_standalone(self) -> SwarmStandaloneConfig | None:
        return self.clustering if self.is_swarm_standalone else None

    @property
    def swarm_mode(self) -> SwarmModeConfig | None:
        return self.clustering if self.is_swarm_mode else None


def _with_mode(value: Any, mode: str) -> Any:
    if isinstance(value, BaseModel):
        return value
    return {**value, "mode": mode}

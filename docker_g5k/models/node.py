"""Data models for node configuration."""

import re

from pydantic import BaseModel, Field, field_validator

from docker_g5k.models.cluster import ClusterConfig


def is_swarm_master(machine_name: str, master_nodes: tuple[str, ...] | list[str]) -> bool:
    """Return True if the machine is one of the Swarm master/manager nodes."""
    return machine_name in master_nodes


class Node(BaseModel):
    """One cluster member: a Grid'5000 node and the Docker machine built on it."""

    node_name: str  # Grid'5000 hostname
    machine_name: str  # docker-machine name
    g5k_site: str
    g5k_job_id: int = Field(ge=0)
    engine_opt: list[str] = Field(default_factory=list)
    engine_label: list[str] = Field(default_factory=list)
    cluster_config: ClusterConfig = Field(repr=False, exclude=True)

    @field_validator("machine_name")
    @classmethod
    def validate_machine_name(cls, v: str) -> str:
        """Validate machine name follows DNS naming conventions."""
        if not v:
            raise ValueError("machine_name cannot be empty")
        if len(v) > 63:
            raise ValueError("machine_name cannot exceed 63 characters")
        # RFC 1123 label, the name ends up in every node's hosts file
        if not re.fullmatch(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?", v, re.IGNORECASE):
            raise ValueError(
                f"machine_name '{v}' must contain only alphanumeric characters and "
                "hyphens, and cannot start or end with a hyphen"
            )
        return v

    @field_validator("node_name", "g5k_site")
    @classmethod
    def validate_not_empty(cls, v: str, info) -> str:
        if not v:
            raise ValueError(f"{info.field_name} cannot be empty")
        return v

    @field_validator("engine_label")
    @classmethod
    def validate_engine_label(cls, v: list[str]) -> list[str]:
        """Validate engine labels are key=value pairs."""
        for label in v:
            if "=" not in label:
                raise ValueError(f"engine label '{label}' must be in key=value format")
        return v

    @property
    def is_swarm_master(self) -> bool:
        return is_swarm_master(self.machine_name, self.cluster_config.swarm_master_nodes)

"""Swarm clustering: standalone (external discovery) and Swarm mode (built-in consensus)."""

import shlex
import threading
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from docker_g5k.exceptions import ProvisioningError, SwarmError
from docker_g5k.logging_config import get_logger
from docker_g5k.machine import SwarmOptions

logger = get_logger(__name__)

ENGINE_PORT = 2376
SWARM_MANAGE_PORT = 3376
SWARM_MODE_PORT = 2377


class SwarmStandaloneConfig(BaseModel):
    """Cluster-wide Swarm standalone configuration."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["standalone"] = "standalone"
    discovery: str
    image: str = "swarm:latest"
    strategy: str = "spread"
    master_flags: list[str] = Field(default_factory=list)
    join_flags: list[str] = Field(default_factory=list)
    is_experimental: bool = False

    @field_validator("discovery")
    @classmethod
    def validate_discovery(cls, v: str) -> str:
        """Validate discovery is a backend URL."""
        if not v:
            raise ValueError("discovery cannot be empty")
        if "://" not in v:
            raise ValueError(f"discovery '{v}' must be a URL (e.g., zk://host:2181/swarm)")
        return v

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        """Validate strategy is a Swarm scheduling strategy."""
        allowed = ["spread", "binpack", "random"]
        if v not in allowed:
            raise ValueError(f"strategy must be one of {allowed}, got '{v}'")
        return v

    def create_node_config(self, node_name: str, is_master: bool, agent: bool) -> SwarmOptions:
        """Return the Swarm options of one node.

        Args:
            node_name: Grid'5000 hostname advertised by the node
            is_master: Run the Swarm manager on the node
            agent: Run the Swarm agent so the node is schedulable once created
        """
        master_flags = list(self.master_flags)
        if is_master:
            master_flags.append(f"advertise={node_name}:{SWARM_MANAGE_PORT}")

        return SwarmOptions(
            is_swarm=is_master or agent,
            master=is_master,
            agent=agent,
            discovery=self.discovery,
            image=self.image,
            strategy=self.strategy,
            host=f"tcp://0.0.0.0:{SWARM_MANAGE_PORT}",
            arbitrary_flags=master_flags,
            arbitrary_join_flags=[*self.join_flags, f"advertise={node_name}:{ENGINE_PORT}"],
            is_experimental=self.is_experimental,
        )


@dataclass
class _SwarmModeState:
    lock: threading.Lock = field(default_factory=threading.Lock)
    manager_address: str | None = None
    manager_token: str | None = None
    worker_token: str | None = None


class SwarmModeConfig(BaseModel):
    """Cluster-wide Swarm mode configuration and bootstrap state.

    The bootstrap state (manager address and join tokens) is set once by the
    first node calling init and read by every node joining afterwards.
    """

    model_config = ConfigDict(frozen=True)

    mode: Literal["swarm-mode"] = "swarm-mode"
    listen_port: int = Field(default=SWARM_MODE_PORT, ge=1, le=65535)

    _state: _SwarmModeState = PrivateAttr(default_factory=_SwarmModeState)

    def is_initialized(self) -> bool:
        """Return True once a bootstrap node has initialized the cluster."""
        with self._state.lock:
            return self._state.manager_address is not None

    def init(self, host) -> None:
        """Initialize the Swarm mode cluster on the bootstrap host.

        Raises:
            SwarmError: If the cluster is already initialized or the host commands fail
        """
        with self._state.lock:
            if self._state.manager_address is not None:
                raise SwarmError(
                    f"Swarm mode cluster is already initialized, {host.name} must join it",
                    f"Bootstrap manager: {self._state.manager_address}",
                )

            try:
                address = host.get_ip()
                host.run_command(
                    f"docker swarm init --advertise-addr {shlex.quote(address)}:{self.listen_port}"
                )
                manager_token = host.run_command("docker swarm join-token -q manager").strip()
                worker_token = host.run_command("docker swarm join-token -q worker").strip()
            except ProvisioningError as e:
                raise SwarmError(
                    f"Failed to initialize the Swarm mode cluster on {host.name}", e.details
                ) from e

            self._state.manager_address = f"{address}:{self.listen_port}"
            self._state.manager_token = manager_token
            self._state.worker_token = worker_token

        logger.info(f"[{host.name}] initialized the Swarm mode cluster")

    def join(self, host, is_manager: bool) -> None:
        """Join the host to the Swarm mode cluster as a manager or a worker.

        Raises:
            SwarmError: If the cluster is not initialized or the join command fails
        """
        with self._state.lock:
            manager_address = self._state.manager_address
            token = self._state.manager_token if is_manager else self._state.worker_token

        if manager_address is None:
            raise SwarmError(
                f"Cannot join {host.name}: the Swarm mode cluster is not initialized",
                "Provision the bootstrap node before the other nodes",
            )

        role = "manager" if is_manager else "worker"
        try:
            host.run_command(
                f"docker swarm join --token {shlex.quote(token)} {shlex.quote(manager_address)}"
            )
        except ProvisioningError as e:
            raise SwarmError(
                f"Failed to join {host.name} to the Swarm mode cluster as {role}", e.details
            ) from e

        logger.info(f"[{host.name}] joined the Swarm mode cluster as {role}")

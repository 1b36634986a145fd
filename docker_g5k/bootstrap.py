"""Per-node bootstrap: from a reserved Grid'5000 node to a Docker cluster member.

A node goes through a fixed sequence of steps::

    descriptor-built -> host-acquired -> host-decorated -> host-created
        -> name-registered -> [clustering-configured] -> done

Every step is attempted once. The first failure is raised to the caller
unchanged and nothing already done is rolled back: a machine that fails after
creation stays leased. ``NodeBootstrapper.last_completed_step`` tells the caller
how far the node went so it can clean up or retry.

Under Swarm mode the first node to find the cluster uninitialized initializes
it. Nothing here serializes concurrent nodes; the caller provisions the
bootstrap node before the others (see ``docker_g5k.cluster``).
"""

from enum import Enum

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from docker_g5k import hostsmapping, weave, zookeeper
from docker_g5k.exceptions import DescriptorError
from docker_g5k.logging_config import get_logger
from docker_g5k.machine import AuthOptions, G5kDriverConfig, Host, get_machine_dir
from docker_g5k.models.node import Node

logger = get_logger(__name__)

DRIVER_NAME = "g5k"
CLUSTER_ADVERTISE = "cluster-advertise=eth0:2379"


class ProvisionStep(str, Enum):
    """Steps of a node bootstrap, in execution order."""

    DESCRIPTOR_BUILT = "descriptor-built"
    HOST_ACQUIRED = "host-acquired"
    HOST_DECORATED = "host-decorated"
    HOST_CREATED = "host-created"
    NAME_REGISTERED = "name-registered"
    CLUSTERING_CONFIGURED = "clustering-configured"
    DONE = "done"


class NodeBootstrapper:
    """Provisions one node and integrates it into the cluster."""

    def __init__(self, node: Node):
        self.node = node
        self.config = node.cluster_config
        self.last_completed_step: ProvisionStep | None = None

    @property
    def is_swarm_master(self) -> bool:
        return self.node.is_swarm_master

    def provision(self) -> None:
        """Install Docker Engine on the node and enroll it in the cluster.

        Raises:
            DescriptorError: If the driver descriptor cannot be built
            DockerG5kError: Any collaborator error, unchanged
        """
        name = self.node.machine_name
        client = self.config.machine_client
        logger.info(f"[{name}] provisioning {self.node.node_name} (site {self.node.g5k_site})")

        data = self.build_driver_descriptor()
        self._completed(ProvisionStep.DESCRIPTOR_BUILT)

        host = client.new_host(DRIVER_NAME, data)
        self._completed(ProvisionStep.HOST_ACQUIRED)

        self.decorate_host(host)
        self._completed(ProvisionStep.HOST_DECORATED)

        client.create(host)
        self._completed(ProvisionStep.HOST_CREATED)

        hostsmapping.add_cluster_hosts_mapping(host, self.config.hosts_lookup_table)
        self._completed(ProvisionStep.NAME_REGISTERED)

        if self.config.swarm_standalone is not None:
            self.run_swarm_standalone(host)
            self._completed(ProvisionStep.CLUSTERING_CONFIGURED)
        elif self.config.swarm_mode is not None:
            self.run_swarm_mode(host)
            self._completed(ProvisionStep.CLUSTERING_CONFIGURED)

        self._completed(ProvisionStep.DONE)
        logger.info(f"[{name}] provisioned")

    def build_driver_descriptor(self) -> bytes:
        """Serialize the g5k driver parameters of the node."""
        machine_name = self.node.machine_name
        base_dir = self.config.machine_client.storage_path
        try:
            driver = G5kDriverConfig(
                machine_name=machine_name,
                store_path=str(base_dir),
                ssh_key_path=str(get_machine_dir(base_dir) / machine_name / "id_rsa"),
                g5k_username=self.config.g5k_username,
                g5k_password=self.config.g5k_password,
                g5k_site=self.node.g5k_site,
                g5k_image=self.config.g5k_image,
                g5k_walltime=self.config.g5k_walltime,
                g5k_job_id=self.node.g5k_job_id,
                g5k_host_to_provision=self.node.node_name,
                ssh_key_pair=self.config.ssh_key_pair,
                g5k_skip_vpn_checks=True,
            )
            return driver.model_dump_json().encode()
        except (ValidationError, PydanticSerializationError) as e:
            raise DescriptorError(
                f"Failed to build the {DRIVER_NAME} driver descriptor of {machine_name}", str(e)
            ) from e

    def decorate_host(self, host: Host) -> None:
        """Attach engine, auth and Swarm options to the host before creation."""
        engine = host.host_options.engine_options
        engine.arbitrary_flags = list(self.node.engine_opt)
        engine.labels = list(self.node.engine_label)
        engine.install_url = self.config.engine_install_url

        # Without explicit auth options the driver uses wrong certificate paths
        host.host_options.auth_options = AuthOptions.for_machine(
            self.node.machine_name, self.config.machine_client.storage_path
        )

        standalone = self.config.swarm_standalone
        if standalone is not None:
            host.host_options.swarm_options = standalone.create_node_config(
                self.node.node_name, self.is_swarm_master, True
            )

        # Engine flags are fixed at creation time
        if self.config.use_zookeeper_cluster_storage:
            engine.arbitrary_flags.extend(
                [CLUSTER_ADVERTISE, f"cluster-store={standalone.discovery}"]
            )

        logger.debug(
            f"[{host.name}] engine flags {engine.arbitrary_flags}, labels {engine.labels}, "
            f"swarm master: {self.is_swarm_master}"
        )

    def run_swarm_standalone(self, host: Host) -> None:
        """Start Zookeeper on masters and join the Weave network."""
        standalone = self.config.swarm_standalone

        if self.is_swarm_master and self.config.use_zookeeper_cluster_storage:
            zookeeper.start_cluster_storage(host, self.config.swarm_master_nodes)

        if self.config.weave_networking_enabled:
            weave.run_weave_net(host)
            weave.run_weave_discovery(host, standalone.discovery)

    def run_swarm_mode(self, host: Host) -> None:
        """Initialize the Swarm mode cluster, or join it if already initialized."""
        swarm_mode = self.config.swarm_mode

        if not swarm_mode.is_initialized():
            logger.info(f"[{host.name}] bootstrapping the Swarm mode cluster")
            swarm_mode.init(host)
        else:
            swarm_mode.join(host, self.is_swarm_master)

    def _completed(self, step: ProvisionStep) -> None:
        self.last_completed_step = step
        logger.debug(f"[{self.node.machine_name}] {step.value}")

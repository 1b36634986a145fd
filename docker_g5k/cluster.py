"""Cluster-level controller: builds the nodes and provisions them."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from docker_g5k.bootstrap import NodeBootstrapper, ProvisionStep
from docker_g5k.exceptions import ConfigurationError, DockerG5kError
from docker_g5k.logging_config import get_logger
from docker_g5k.models.cluster import ClusterConfig
from docker_g5k.models.node import Node

logger = get_logger(__name__)


@dataclass
class ProvisionResult:
    """Outcome of the provisioning of one node."""

    machine_name: str
    node_name: str
    is_swarm_master: bool
    last_completed_step: ProvisionStep | None = None
    error: DockerG5kError | None = None
    skipped: bool = False

    @property
    def success(self) -> bool:
        return self.error is None and self.last_completed_step == ProvisionStep.DONE

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return "provisioned" if self.success else "failed"


class Cluster:
    """A set of nodes sharing one cluster configuration."""

    def __init__(self, config: ClusterConfig):
        self.config = config
        self.nodes: list[Node] = []
        self._site_counters: dict[str, int] = {}

    def next_machine_name(self, site: str) -> str:
        """Return the next free machine name of a site (<site>-<index>)."""
        index = self._site_counters.get(site, 0)
        self._site_counters[site] = index + 1
        return f"{site}-{index}"

    def add_node(
        self,
        site: str,
        job_id: int,
        node_name: str,
        engine_opt: list[str] | None = None,
        engine_label: list[str] | None = None,
        machine_name: str | None = None,
    ) -> Node:
        """Add a reserved Grid'5000 node to the cluster.

        Must be called before provisioning starts: the node is also added to the
        hosts lookup table under its Grid'5000 hostname.
        """
        if machine_name is None:
            machine_name = self.next_machine_name(site)
        if any(n.machine_name == machine_name for n in self.nodes):
            raise ConfigurationError(f"Machine name '{machine_name}' is already used")

        node = Node(
            node_name=node_name,
            machine_name=machine_name,
            g5k_site=site,
            g5k_job_id=job_id,
            engine_opt=engine_opt or [],
            engine_label=engine_label or [],
            cluster_config=self.config,
        )
        self.nodes.append(node)
        self.config.hosts_lookup_table.register(machine_name, node_name)
        logger.debug(f"Added node {machine_name} ({node_name})")
        return node

    def validate(self) -> None:
        """Check the nodes against the cluster configuration.

        Raises:
            ConfigurationError: If the configuration cannot be applied to the nodes
        """
        if not self.nodes:
            raise ConfigurationError("The cluster has no node", "Add at least one reservation")

        machine_names = {n.machine_name for n in self.nodes}
        unknown = [m for m in self.config.swarm_master_nodes if m not in machine_names]
        if unknown:
            raise ConfigurationError(
                f"Unknown Swarm master nodes: {', '.join(unknown)}",
                f"Available machines: {', '.join(sorted(machine_names))}",
            )

        if self.config.use_zookeeper_cluster_storage and not self.config.swarm_master_nodes:
            raise ConfigurationError(
                "Zookeeper cluster storage needs at least one Swarm master node"
            )

    def bootstrap_node(self) -> Node:
        """Return the node initializing a Swarm mode cluster: the first master, if any."""
        for node in self.nodes:
            if node.is_swarm_master:
                return node
        return self.nodes[0]

    def provision_node(self, node: Node) -> ProvisionResult:
        """Provision one node, reporting failure instead of raising it."""
        bootstrapper = NodeBootstrapper(node)
        result = ProvisionResult(
            machine_name=node.machine_name,
            node_name=node.node_name,
            is_swarm_master=node.is_swarm_master,
        )
        try:
            bootstrapper.provision()
        except DockerG5kError as e:
            step = bootstrapper.last_completed_step
            logger.error(
                f"[{node.machine_name}] provisioning failed after "
                f"{step.value if step else 'start'}: {e.message}"
            )
            result.error = e
        result.last_completed_step = bootstrapper.last_completed_step
        return result

    def provision_nodes(self, max_workers: int | None = None) -> list[ProvisionResult]:
        """Provision all nodes, in parallel.

        Under Swarm mode the bootstrap node is provisioned first, alone, so
        every other node finds the cluster initialized and joins it. If it
        fails, the other nodes are skipped.

        Returns:
            One result per node, in the order the nodes were added
        """
        self.validate()

        results: dict[str, ProvisionResult] = {}
        pending = list(self.nodes)

        swarm_mode = self.config.swarm_mode
        if swarm_mode is not None and not swarm_mode.is_initialized():
            bootstrap = self.bootstrap_node()
            logger.info(f"Provisioning Swarm mode bootstrap node {bootstrap.machine_name}")
            result = self.provision_node(bootstrap)
            results[bootstrap.machine_name] = result
            pending.remove(bootstrap)

            if not result.success:
                logger.error("Swarm mode bootstrap node failed, skipping the other nodes")
                for node in pending:
                    results[node.machine_name] = ProvisionResult(
                        machine_name=node.machine_name,
                        node_name=node.node_name,
                        is_swarm_master=node.is_swarm_master,
                        skipped=True,
                    )
                pending = []

        if pending:
            logger.info(f"Provisioning {len(pending)} nodes")
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                for result in executor.map(self.provision_node, pending):
                    results[result.machine_name] = result

        return [results[n.machine_name] for n in self.nodes]

"""Pytest configuration and shared fixtures."""

import pytest
from hypothesis import Verbosity, settings

from docker_g5k.exceptions import ProvisioningError
from docker_g5k.machine import DockerMachineClient
from docker_g5k.models.cluster import ClusterConfig
from docker_g5k.models.node import Node

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


class FakeMachineClient(DockerMachineClient):
    """docker-machine client recording every call instead of running commands.

    Events are tuples appended to ``events``:
    ("new_host", name), ("create", name, engine_flags), ("ip", name),
    ("ssh", name, command).
    """

    def __init__(self, fail_on: set[str] | None = None, ssh_failures: dict | None = None):
        super().__init__(storage_path="/tmp/docker-machine-test", binary="docker-machine")
        self.events = []
        self.hosts = {}
        self.fail_on = fail_on or set()
        self.ssh_failures = ssh_failures or {}

    def new_host(self, driver_name, raw_driver):
        if "new_host" in self.fail_on:
            raise ProvisioningError("lease failed")
        host = super().new_host(driver_name, raw_driver)
        self.events.append(("new_host", host.name))
        self.hosts[host.name] = host
        return host

    def create(self, host):
        if "create" in self.fail_on:
            raise ProvisioningError("create failed")
        flags = list(host.host_options.engine_options.arbitrary_flags)
        self.events.append(("create", host.name, flags))

    def get_ip(self, host):
        if "ip" in self.fail_on:
            raise ProvisioningError("ip failed")
        self.events.append(("ip", host.name))
        index = sum(ord(c) for c in host.name) % 250 + 1
        return f"172.16.0.{index}"

    def run_ssh(self, host, command):
        self.events.append(("ssh", host.name, command))
        for pattern, error in self.ssh_failures.items():
            if pattern in command:
                raise error
        if "join-token -q manager" in command:
            return "SWMTKN-manager\n"
        if "join-token -q worker" in command:
            return "SWMTKN-worker\n"
        return ""

    def commands(self, name=None):
        """Return the SSH commands run, optionally on one host only."""
        return [e[2] for e in self.events if e[0] == "ssh" and (name is None or e[1] == name)]


@pytest.fixture
def machine_client():
    return FakeMachineClient()


@pytest.fixture
def make_config(machine_client):
    """Factory building a ClusterConfig with test credentials."""

    def _make(**overrides):
        data = {
            "g5k_username": "jdoe",
            "g5k_password": "secret",
            "ssh_key_pair": "/home/jdoe/.ssh/id_rsa",
            "machine_client": machine_client,
        }
        data.update(overrides)
        return ClusterConfig(**data)

    return _make


@pytest.fixture
def make_node():
    """Factory building a node attached to a cluster configuration."""

    def _make(config, machine_name="rennes-0", **overrides):
        data = {
            "node_name": f"paravance-{machine_name.rsplit('-', 1)[-1]}.rennes.grid5000.fr",
            "machine_name": machine_name,
            "g5k_site": "rennes",
            "g5k_job_id": 1234,
            "cluster_config": config,
        }
        data.update(overrides)
        return Node(**data)

    return _make


@pytest.fixture
def sample_cluster_data():
    """Sample cluster file content."""
    return {
        "cluster": {
            "g5k_username": "jdoe",
            "g5k_password": "secret",
            "ssh_key_pair": "/home/jdoe/.ssh/id_rsa",
            "swarm_mode": {},
        },
        "reservations": [
            {
                "site": "rennes",
                "job_id": 1234,
                "nodes": ["paravance-1.rennes.grid5000.fr", "paravance-2.rennes.grid5000.fr"],
            },
            {
                "site": "lyon",
                "job_id": 42,
                "nodes": ["nova-1.lyon.grid5000.fr"],
                "engine_opt": ["debug"],
                "engine_label": ["site=lyon"],
            },
        ],
    }


@pytest.fixture
def fake_client_factory():
    """FakeMachineClient class, for tests needing a fresh client per example."""
    return FakeMachineClient

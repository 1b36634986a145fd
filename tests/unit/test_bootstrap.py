"""Unit tests for the per-node bootstrap sequence."""

import json
from unittest.mock import patch

import pytest

from docker_g5k.bootstrap import CLUSTER_ADVERTISE, NodeBootstrapper, ProvisionStep
from docker_g5k.exceptions import (
    DescriptorError,
    ProvisioningError,
    RegistrationError,
    SwarmError,
    WeaveError,
)
from docker_g5k.machine import get_machine_cert_dir, get_machine_dir
from docker_g5k.models.node import Node
from docker_g5k.swarm import SwarmModeConfig

DISCOVERY = "zk://rennes-0:2181/swarm"


def standalone_config(make_config, **overrides):
    data = {
        "swarm_master_nodes": ["rennes-0", "rennes-1"],
        "use_zookeeper_cluster_storage": True,
        "weave_networking_enabled": True,
        "swarm_standalone": {"discovery": DISCOVERY},
    }
    data.update(overrides)
    return make_config(**data)


def event_kinds(client):
    return [e[0] for e in client.events]


def test_standalone_master_step_order(machine_client, make_config, make_node):
    """A master with Zookeeper and Weave runs every step in order."""
    node = make_node(standalone_config(make_config), "rennes-0")
    bootstrapper = NodeBootstrapper(node)

    bootstrapper.provision()

    assert event_kinds(machine_client) == ["new_host", "create", "ip", "ssh", "ssh", "ssh", "ssh"]
    create_flags = machine_client.events[1][2]
    assert CLUSTER_ADVERTISE in create_flags
    assert f"cluster-store={DISCOVERY}" in create_flags

    hosts_cmd, zk_cmd, weave_cmd, discovery_cmd = machine_client.commands("rennes-0")
    assert "/etc/hosts" in hosts_cmd
    assert "rennes-0" in hosts_cmd
    assert "--name zookeeper" in zk_cmd
    assert "ZOO_MY_ID=1" in zk_cmd
    assert "server.1=rennes-0:2888:3888 server.2=rennes-1:2888:3888" in zk_cmd
    assert "weave launch" in weave_cmd
    assert "discovery join" in discovery_cmd
    assert DISCOVERY in discovery_cmd

    assert bootstrapper.last_completed_step == ProvisionStep.DONE


def test_standalone_worker_skips_zookeeper(machine_client, make_config, make_node):
    """Workers never start Zookeeper but still join Weave."""
    node = make_node(standalone_config(make_config), "rennes-5")

    NodeBootstrapper(node).provision()

    commands = machine_client.commands()
    assert not any("zookeeper" in c for c in commands)
    assert any("weave launch" in c for c in commands)


def test_zookeeper_disabled_has_no_cluster_store_flags(machine_client, make_config, make_node):
    config = standalone_config(make_config, use_zookeeper_cluster_storage=False)
    node = make_node(config, "rennes-0", engine_opt=["debug"])

    with patch("docker_g5k.zookeeper.start_cluster_storage") as start:
        NodeBootstrapper(node).provision()

    create_flags = machine_client.events[1][2]
    assert create_flags == ["debug"]
    start.assert_not_called()


def test_node_engine_options_are_not_mutated(machine_client, make_config, make_node):
    """Cluster-store flags go to the host, never to the node definition."""
    node = make_node(standalone_config(make_config), "rennes-0", engine_opt=["debug"])

    NodeBootstrapper(node).provision()

    assert node.engine_opt == ["debug"]
    assert machine_client.events[1][2] == ["debug", CLUSTER_ADVERTISE, f"cluster-store={DISCOVERY}"]


def test_host_decoration(machine_client, make_config, make_node):
    config = standalone_config(make_config, engine_install_url="https://test.docker.com")
    node = make_node(config, "rennes-1", engine_label=["disk=ssd"])

    NodeBootstrapper(node).provision()

    host = machine_client.hosts["rennes-1"]
    options = host.host_options
    assert options.engine_options.labels == ["disk=ssd"]
    assert options.engine_options.install_url == "https://test.docker.com"

    base = machine_client.storage_path
    auth = options.auth_options
    assert auth.ca_cert_path == get_machine_cert_dir(base) / "ca.pem"
    assert auth.ca_private_key_path == get_machine_cert_dir(base) / "ca-key.pem"
    assert auth.client_cert_path == get_machine_cert_dir(base) / "cert.pem"
    assert auth.client_key_path == get_machine_cert_dir(base) / "key.pem"
    assert auth.server_cert_path == get_machine_dir(base) / "rennes-1" / "server.pem"
    assert auth.server_key_path == get_machine_dir(base) / "rennes-1" / "server-key.pem"
    assert auth.store_path == get_machine_dir(base) / "rennes-1"

    swarm = options.swarm_options
    assert swarm.is_swarm
    assert swarm.master
    assert swarm.agent
    assert swarm.discovery == DISCOVERY


def test_descriptor_contains_node_and_cluster_parameters(machine_client, make_config, make_node):
    node = make_node(make_config(g5k_image="debian11-min"), "rennes-3", g5k_job_id=99)
    bootstrapper = NodeBootstrapper(node)

    descriptor = json.loads(bootstrapper.build_driver_descriptor())

    assert descriptor["machine_name"] == "rennes-3"
    assert descriptor["g5k_username"] == "jdoe"
    assert descriptor["g5k_site"] == "rennes"
    assert descriptor["g5k_image"] == "debian11-min"
    assert descriptor["g5k_job_id"] == 99
    assert descriptor["g5k_host_to_provision"] == node.node_name
    assert descriptor["g5k_skip_vpn_checks"] is True
    assert descriptor["ssh_key_path"].endswith("rennes-3/id_rsa")
    assert descriptor["store_path"] == str(machine_client.storage_path)
    assert descriptor["ssh_key_pair"] == "/home/jdoe/.ssh/id_rsa"


def test_descriptor_error_is_raised_before_leasing(machine_client, make_config):
    config = make_config()
    node = Node.model_construct(
        node_name="paravance-1.rennes.grid5000.fr",
        machine_name="rennes-0",
        g5k_site="rennes",
        g5k_job_id="not-a-number",
        engine_opt=[],
        engine_label=[],
        cluster_config=config,
    )
    bootstrapper = NodeBootstrapper(node)

    with pytest.raises(DescriptorError):
        bootstrapper.provision()

    assert machine_client.events == []
    assert bootstrapper.last_completed_step is None


def test_lease_failure_propagates_unchanged(fake_client_factory, make_config, make_node):
    client = fake_client_factory(fail_on={"new_host"})
    node = make_node(make_config(machine_client=client))
    bootstrapper = NodeBootstrapper(node)

    with pytest.raises(ProvisioningError, match="lease failed"):
        bootstrapper.provision()

    assert bootstrapper.last_completed_step == ProvisionStep.DESCRIPTOR_BUILT


def test_create_failure_stops_before_registration(fake_client_factory, make_config, make_node):
    client = fake_client_factory(fail_on={"create"})
    node = make_node(make_config(machine_client=client))
    bootstrapper = NodeBootstrapper(node)

    with pytest.raises(ProvisioningError, match="create failed"):
        bootstrapper.provision()

    assert bootstrapper.last_completed_step == ProvisionStep.HOST_DECORATED
    assert event_kinds(client) == ["new_host"]


def test_registration_failure_stops_before_clustering(fake_client_factory, make_config, make_node):
    client = fake_client_factory(fail_on={"ip"})
    config = make_config(machine_client=client, swarm_mode={})
    bootstrapper = NodeBootstrapper(make_node(config))

    with pytest.raises(RegistrationError):
        bootstrapper.provision()

    assert bootstrapper.last_completed_step == ProvisionStep.HOST_CREATED
    assert not config.swarm_mode.is_initialized()
    assert client.commands() == []


def test_weave_failure_skips_discovery(fake_client_factory, make_config, make_node):
    client = fake_client_factory(ssh_failures={"weave launch": ProvisioningError("boom")})
    config = standalone_config(make_config, machine_client=client)
    bootstrapper = NodeBootstrapper(make_node(config, "rennes-4"))

    with pytest.raises(WeaveError):
        bootstrapper.provision()

    assert not any("discovery join" in c for c in client.commands())
    assert bootstrapper.last_completed_step == ProvisionStep.NAME_REGISTERED


def test_zookeeper_failure_does_not_abort(fake_client_factory, make_config, make_node):
    """Zookeeper start is best effort."""
    client = fake_client_factory(ssh_failures={"--name zookeeper": ProvisioningError("boom")})
    config = standalone_config(make_config, machine_client=client)
    bootstrapper = NodeBootstrapper(make_node(config, "rennes-0"))

    bootstrapper.provision()

    assert bootstrapper.last_completed_step == ProvisionStep.DONE
    assert any("discovery join" in c for c in client.commands())


def test_no_clustering_stops_after_registration(machine_client, make_config, make_node):
    bootstrapper = NodeBootstrapper(make_node(make_config()))

    bootstrapper.provision()

    assert event_kinds(machine_client) == ["new_host", "create", "ip", "ssh"]
    assert machine_client.hosts["rennes-0"].host_options.swarm_options is None
    assert bootstrapper.last_completed_step == ProvisionStep.DONE


def test_swarm_mode_first_node_initializes(machine_client, make_config, make_node):
    config = make_config(swarm_mode={}, swarm_master_nodes=["rennes-0"])

    NodeBootstrapper(make_node(config, "rennes-0")).provision()

    commands = machine_client.commands("rennes-0")
    assert any(c.startswith("docker swarm init") for c in commands)
    assert not any("docker swarm join --token" in c for c in commands)
    assert config.swarm_mode.is_initialized()


def test_swarm_mode_worker_joins_initialized_cluster(machine_client, make_config, make_node):
    """A non-master node joins as worker and never touches standalone collaborators."""
    config = make_config(swarm_mode={}, swarm_master_nodes=["rennes-0"])
    node = make_node(config, "rennes-2")

    with patch.object(SwarmModeConfig, "is_initialized", return_value=True), patch.object(
        SwarmModeConfig, "init"
    ) as init, patch.object(SwarmModeConfig, "join") as join, patch(
        "docker_g5k.zookeeper.start_cluster_storage"
    ) as start_zk, patch("docker_g5k.weave.run_weave_net") as weave_net:
        NodeBootstrapper(node).provision()

    init.assert_not_called()
    join.assert_called_once()
    host, is_manager = join.call_args[0]
    assert host.name == "rennes-2"
    assert is_manager is False
    start_zk.assert_not_called()
    weave_net.assert_not_called()
    assert machine_client.hosts["rennes-2"].host_options.swarm_options is None


def test_swarm_mode_join_uses_role_token(machine_client, make_config, make_node):
    config = make_config(swarm_mode={}, swarm_master_nodes=["rennes-0", "rennes-1"])
    for name in ("rennes-0", "rennes-1", "rennes-2"):
        NodeBootstrapper(make_node(config, name)).provision()

    manager_join = [c for c in machine_client.commands("rennes-1") if "swarm join" in c]
    worker_join = [c for c in machine_client.commands("rennes-2") if "swarm join" in c]
    assert len(manager_join) == 1
    assert "SWMTKN-manager" in manager_join[0]
    assert len(worker_join) == 1
    assert "SWMTKN-worker" in worker_join[0]


def test_swarm_mode_init_failure_propagates(fake_client_factory, make_config, make_node):
    client = fake_client_factory(ssh_failures={"swarm init": ProvisioningError("boom", "no")})
    config = make_config(machine_client=client, swarm_mode={})
    bootstrapper = NodeBootstrapper(make_node(config))

    with pytest.raises(SwarmError):
        bootstrapper.provision()

    assert not config.swarm_mode.is_initialized()
    assert bootstrapper.last_completed_step == ProvisionStep.NAME_REGISTERED

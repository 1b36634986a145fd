"""Data models for cluster and node configuration."""

from docker_g5k.models.cluster import ClusterConfig, ClusteringMode
from docker_g5k.models.node import Node, is_swarm_master

__all__ = [
    "ClusterConfig",
    "ClusteringMode",
    "Node",
    "is_swarm_master",
]

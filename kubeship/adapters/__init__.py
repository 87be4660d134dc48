"""Adapters — bindings to docker, kubectl, and their in-memory doubles.

Public re-exports for convenient access.
"""

from kubeship.adapters.base import BuildBackend, ClusterApi
from kubeship.adapters.cluster.kubectl import KubectlClusterApi
from kubeship.adapters.containers.docker import DockerBuildBackend
from kubeship.adapters.mock import MockBuildBackend, MockClusterApi

__all__ = [
    "BuildBackend",
    "ClusterApi",
    "DockerBuildBackend",
    "KubectlClusterApi",
    "MockBuildBackend",
    "MockClusterApi",
]

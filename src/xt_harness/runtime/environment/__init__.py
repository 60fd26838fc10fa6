"""Execution environments: where commands for a check actually run."""

from xt_harness.runtime.environment.android import AndroidEnvironment
from xt_harness.runtime.environment.base import Environment
from xt_harness.runtime.environment.choose import EnvironmentCache, EnvironmentKey
from xt_harness.runtime.environment.docker import DockerEnvironment
from xt_harness.runtime.environment.host import HostEnvironment

__all__ = [
    "AndroidEnvironment",
    "DockerEnvironment",
    "Environment",
    "EnvironmentCache",
    "EnvironmentKey",
    "HostEnvironment",
]

"""JUnit command host module."""

from flake_triage.hosts.junit_command.config import JUnitCommandConfig
from flake_triage.hosts.junit_command.host import JUnitCommandHost
from flake_triage.hosts.junit_command.manifest import junit_command_manifest

__all__ = ["JUnitCommandConfig", "JUnitCommandHost", "junit_command_manifest"]

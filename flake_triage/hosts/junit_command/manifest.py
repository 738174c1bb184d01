"""JUnit command host manifest."""

from flake_triage.hosts.junit_command.config import JUnitCommandConfig
from flake_triage.hosts.junit_command.host import JUnitCommandHost
from flake_triage.hosts.manifest import HostManifest

junit_command_manifest = HostManifest(
    config_cls=JUnitCommandConfig,
    host_factory=JUnitCommandHost.from_config,
)

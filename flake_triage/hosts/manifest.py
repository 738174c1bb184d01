"""Host manifest definition for the plugin system."""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from pydantic import BaseModel

from flake_triage.hosts.base import ExecutionHost


@dataclass(frozen=True, kw_only=True)
class HostManifest[ConfigT: BaseModel]:
    """Manifest describing an execution host plugin.

    The manifest contains references to the configuration class and the host
    factory function for lazy loading of hosts based on their key.
    """

    config_cls: type[ConfigT]
    host_factory: Callable[[ConfigT], AbstractAsyncContextManager[ExecutionHost]]

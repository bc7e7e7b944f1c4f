"""
PHPSwitch 核心模块。

提供版本查询、版本切换、shell 配置同步和 PHP-FPM 服务管理功能。
"""

from .interfaces import (
    IConfigManager, IRegistryClient, IVersionResolver, IShellConfigSynchronizer, IServiceManager,
)
from .config_manager import ConfigManager, ConfigSaveError
from .homebrew import Homebrew
from .registry_client import (
    RegistryClient, RegistryError, RegistryUnavailable, RegistryTimeout,
    InstallFailed, UninstallFailed, SourceStatus, AvailableVersionsLoader,
)
from .version_resolver import VersionResolver
from .shell_sync import ShellConfigSynchronizer, ShellSyncError, ConfigWriteFailed, UnsupportedShell
from .service_manager import ServiceManager, ServiceError, ServiceOperationTimedOut, ServiceOperationFailed
from .project_locator import ProjectLocator, ProjectFileError
from .switch_orchestrator import (
    SwitchOrchestrator, SwitchResult, SwitchState,
    SwitchError, InvalidVersion, VersionNotInstalled, LinkFailed, VersionInUse,
)
from . import version_utils

__all__ = [
    "IConfigManager", "IRegistryClient", "IVersionResolver", "IShellConfigSynchronizer", "IServiceManager",
    "ConfigManager", "ConfigSaveError",
    "Homebrew",
    "RegistryClient", "RegistryError", "RegistryUnavailable", "RegistryTimeout",
    "InstallFailed", "UninstallFailed", "SourceStatus", "AvailableVersionsLoader",
    "VersionResolver",
    "ShellConfigSynchronizer", "ShellSyncError", "ConfigWriteFailed", "UnsupportedShell",
    "ServiceManager", "ServiceError", "ServiceOperationTimedOut", "ServiceOperationFailed",
    "ProjectLocator", "ProjectFileError",
    "SwitchOrchestrator", "SwitchResult", "SwitchState",
    "SwitchError", "InvalidVersion", "VersionNotInstalled", "LinkFailed", "VersionInUse",
    "version_utils",
]

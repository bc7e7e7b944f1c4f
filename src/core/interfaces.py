"""
核心模块抽象接口定义。

定义 ConfigManager、RegistryClient、VersionResolver、ShellConfigSynchronizer、
ServiceManager 等核心模块的抽象接口。
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, List, Dict, Any


class IConfigManager(ABC):
    """配置管理器抽象接口。"""

    @abstractmethod
    def get_config(self) -> Dict[str, Any]:
        """获取配置字典。"""
        pass

    @abstractmethod
    def get_auto_restart_fpm(self) -> bool:
        """切换版本后是否自动重启 PHP-FPM 服务。"""
        pass

    @abstractmethod
    def get_backup_enabled(self) -> bool:
        """修改 shell 配置文件前是否创建备份。"""
        pass

    @abstractmethod
    def get_max_backups(self) -> int:
        """获取最大备份数量。"""
        pass

    @abstractmethod
    def get_default_version(self) -> Optional[str]:
        """获取默认 PHP 版本。"""
        pass

    @abstractmethod
    def get_cache_dir(self) -> Path:
        """获取缓存目录。"""
        pass


class IRegistryClient(ABC):
    """PHP 版本注册表客户端抽象接口。"""

    @abstractmethod
    def list_installed(self) -> List[Dict[str, Any]]:
        """获取已安装的 PHP 版本列表。"""
        pass

    @abstractmethod
    def list_available(self, use_cache: bool = True) -> Dict[str, Any]:
        """获取可安装的 PHP 版本列表。"""
        pass

    @abstractmethod
    def install(self, version: str) -> None:
        """安装指定版本。"""
        pass

    @abstractmethod
    def uninstall(self, version: str) -> None:
        """卸载指定版本。"""
        pass

    @abstractmethod
    def clear_cache(self) -> bool:
        """清除可用版本缓存。"""
        pass


class IVersionResolver(ABC):
    """版本解析器抽象接口。"""

    @abstractmethod
    def get_linked_version(self) -> str:
        """获取 Homebrew 当前链接的版本。"""
        pass

    @abstractmethod
    def get_active_version(self) -> Dict[str, Any]:
        """获取 PATH 上实际生效的版本。"""
        pass


class IShellConfigSynchronizer(ABC):
    """shell 配置同步器抽象接口。"""

    @abstractmethod
    def detect_shell(self) -> str:
        """检测当前用户的 shell 类型。"""
        pass

    @abstractmethod
    def update_config(self, version: str) -> Dict[str, Any]:
        """更新 shell 配置文件中的 PATH 托管块。"""
        pass


class IServiceManager(ABC):
    """PHP-FPM 服务管理器抽象接口。"""

    @abstractmethod
    def service_name_for(self, version: str) -> str:
        """获取版本对应的服务名称。"""
        pass

    @abstractmethod
    def stop_others(self, keep: str) -> List[Dict[str, str]]:
        """停止除指定版本外的所有 PHP 服务。"""
        pass

    @abstractmethod
    def restart(self, version: str) -> Dict[str, Any]:
        """重启指定版本的服务。"""
        pass

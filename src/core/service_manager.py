"""
PHP-FPM 服务管理模块。

通过 brew services 停止和启动每个版本对应的 PHP-FPM 服务，
保证同一时间只有一个 PHP 服务在运行。
"""

import re
from typing import List, Dict, Any, Optional

from src.utils.logger import get_logger
from src.utils.command_runner import CommandResult
from src.core.config_manager import ConfigManager
from src.core.homebrew import Homebrew
from src.core.interfaces import IServiceManager
from src.core.version_utils import formula_name, version_from_formula

logger = get_logger()

STOPPED_STATUSES = ("none", "stopped")
NOT_RUNNING_PATTERN = re.compile(r'not started|not running|is not loaded|already stopped', re.IGNORECASE)
ALREADY_RUNNING_PATTERN = re.compile(r'already started|already running', re.IGNORECASE)


class ServiceError(Exception):
    """服务操作错误异常基类。"""

    def __init__(self, message: str, remedy: Optional[str] = None):
        super().__init__(message)
        self.remedy = remedy
        self.warnings: List[Dict[str, str]] = []


class ServiceOperationTimedOut(ServiceError):
    """服务操作超时异常。"""
    pass


class ServiceOperationFailed(ServiceError):
    """服务操作失败异常。"""
    pass


def error_to_warning(error: ServiceError) -> Dict[str, str]:
    """
    将服务异常转换为警告字典。

    参数:
        error: 服务异常

    返回:
        包含 code、message、remedy 的字典
    """
    return {
        "code": type(error).__name__,
        "message": str(error),
        "remedy": error.remedy or "",
    }


class ServiceManager(IServiceManager):
    """
    PHP-FPM 服务管理器类。

    实现 IServiceManager 抽象接口。
    """

    def __init__(self, config_manager: ConfigManager, homebrew: Homebrew):
        """
        初始化服务管理器。

        参数:
            config_manager: 配置管理器实例
            homebrew: Homebrew 封装实例
        """
        self.config_manager = config_manager
        self.homebrew = homebrew

    def service_name_for(self, version: str) -> str:
        """获取版本对应的服务名称，default 对应 php。"""
        return formula_name(version)

    def list_services(self) -> List[Dict[str, str]]:
        """
        列出 brew services 中的 PHP 服务。

        返回:
            包含 name 和 status 的字典列表

        抛出:
            ServiceOperationTimedOut: 命令超时
            ServiceOperationFailed: 命令失败
        """
        result = self.homebrew.services_list()
        self._raise_for_result(result, "brew services list")

        services = []
        for line in result.stdout.splitlines():
            fields = line.split()
            if not fields or version_from_formula(fields[0]) is None:
                continue
            services.append({
                "name": fields[0],
                "status": fields[1].lower() if len(fields) > 1 else "none",
            })
        return services

    def stop(self, name: str) -> None:
        """
        停止服务，服务本来就没有运行时视为成功。

        参数:
            name: 服务名称

        抛出:
            ServiceOperationTimedOut: 命令超时
            ServiceOperationFailed: 命令失败
        """
        result = self.homebrew.services_stop(name)
        if not result.timed_out and NOT_RUNNING_PATTERN.search(result.output):
            logger.debug(f"服务 {name} 未运行，无需停止")
            return
        self._raise_for_result(result, f"brew services stop {name}")
        logger.info(f"已停止服务 {name}")

    def start(self, name: str) -> None:
        """
        启动服务，服务已在运行时视为成功。

        参数:
            name: 服务名称

        抛出:
            ServiceOperationTimedOut: 命令超时
            ServiceOperationFailed: 命令失败
        """
        result = self.homebrew.services_start(name)
        if not result.timed_out and ALREADY_RUNNING_PATTERN.search(result.output):
            logger.debug(f"服务 {name} 已在运行")
            return
        self._raise_for_result(result, f"brew services start {name}")
        logger.info(f"已启动服务 {name}")

    def stop_others(self, keep: str) -> List[Dict[str, str]]:
        """
        停止除指定版本外的所有 PHP 服务。

        单个服务失败不会中断循环。

        参数:
            keep: 保留运行的版本标识

        返回:
            警告列表
        """
        keep_name = self.service_name_for(keep)
        try:
            services = self.list_services()
        except ServiceError as e:
            logger.warning(f"无法列出 PHP 服务: {e}")
            return [error_to_warning(e)]

        warnings = []
        for service in services:
            if service["name"] == keep_name or service["status"] in STOPPED_STATUSES:
                continue
            logger.info(f"正在停止 PHP-FPM 服务 {service['name']}")
            try:
                self.stop(service["name"])
            except ServiceError as e:
                logger.warning(f"停止服务 {service['name']} 失败: {e}")
                warnings.append(error_to_warning(e))
        return warnings

    def restart(self, version: str) -> Dict[str, Any]:
        """
        重启指定版本的服务。

        配置关闭自动重启时不做任何操作。

        参数:
            version: 版本标识

        返回:
            包含 service、restarted、skipped、warnings 的字典

        抛出:
            ServiceOperationTimedOut: 停止或启动超时
            ServiceOperationFailed: 停止或启动失败
        """
        name = self.service_name_for(version)
        if not self.config_manager.get_auto_restart_fpm():
            logger.debug("配置已关闭自动重启 PHP-FPM")
            return {"service": name, "restarted": False, "skipped": True, "warnings": []}

        warnings = self.stop_others(version)
        try:
            self.stop(name)
            self.start(name)
        except ServiceError as e:
            e.warnings = warnings
            raise

        logger.info(f"PHP-FPM 服务 {name} 已重启")
        return {"service": name, "restarted": True, "skipped": False, "warnings": warnings}

    def _raise_for_result(self, result: CommandResult, action: str) -> None:
        if result.timed_out:
            raise ServiceOperationTimedOut(
                f"{action} 超时",
                f"稍后手动运行 {action}"
            )
        if not result.ok:
            raise ServiceOperationFailed(
                result.describe(),
                f"手动运行 {action} 查看详细信息"
            )

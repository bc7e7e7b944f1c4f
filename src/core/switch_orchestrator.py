"""
版本切换编排模块。

按 校验 -> (安装) -> 链接 -> 同步 shell 配置 -> 协调服务 -> 验证 的顺序执行版本切换，
每个阶段的失败分别归类为错误或警告，并汇总到 SwitchResult 中。
"""

from pathlib import Path
from typing import Optional, List, Dict, Any

from src.utils.logger import get_logger
from src.utils.input_validator import InputValidationError
from src.core.config_manager import ConfigManager
from src.core.homebrew import Homebrew
from src.core.registry_client import RegistryClient, RegistryUnavailable, InstallFailed
from src.core.version_resolver import VersionResolver
from src.core.shell_sync import ShellConfigSynchronizer, ConfigWriteFailed
from src.core.service_manager import ServiceManager, ServiceError, error_to_warning
from src.core.project_locator import ProjectLocator
from src.core.version_utils import normalize_version, formula_name, NO_VERSION

logger = get_logger()


class SwitchState:
    """切换状态常量。"""

    IDLE = "idle"
    VALIDATING = "validating"
    INSTALLING = "installing"
    LINKING = "linking"
    SYNCING_SHELL = "syncing_shell"
    RECONCILING_SERVICE = "reconciling_service"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


class SwitchError(Exception):
    """版本切换错误异常基类。"""

    def __init__(self, message: str, remedy: Optional[str] = None):
        super().__init__(message)
        self.remedy = remedy


class InvalidVersion(SwitchError):
    """版本标识无效异常。"""
    pass


class VersionNotInstalled(SwitchError):
    """版本未安装异常。"""
    pass


class LinkFailed(SwitchError):
    """brew link 失败异常。"""
    pass


class VersionInUse(SwitchError):
    """版本正在使用中异常。"""
    pass


class SwitchResult:
    """
    一次版本切换的结果。

    记录经过的状态、警告和错误，errors 为空即表示成功。
    """

    def __init__(self, requested_version: str):
        self.requested_version = requested_version
        self.version: Optional[str] = None
        self.previous_version: Optional[str] = None
        self.states: List[str] = [SwitchState.IDLE]
        self.warnings: List[Dict[str, str]] = []
        self.errors: List[Dict[str, str]] = []
        self.shell: Optional[Dict[str, Any]] = None
        self.service: Optional[Dict[str, Any]] = None
        self.active: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return not self.errors

    @property
    def final_state(self) -> str:
        return self.states[-1]

    def enter(self, state: str) -> None:
        logger.debug(f"切换状态: {self.final_state} -> {state}")
        self.states.append(state)

    def add_warning(self, code: str, message: str, remedy: Optional[str] = None) -> None:
        logger.warning(f"{code}: {message}")
        self.warnings.append({"code": code, "message": message, "remedy": remedy or ""})

    def add_error(self, code: str, message: str, remedy: Optional[str] = None) -> None:
        logger.error(f"{code}: {message}")
        self.errors.append({"code": code, "message": message, "remedy": remedy or ""})

    def finish(self) -> "SwitchResult":
        self.enter(SwitchState.DONE if self.succeeded else SwitchState.FAILED)
        return self


class SwitchOrchestrator:
    """
    版本切换编排器类。

    各阶段之间不做事务回滚：链接成功后 shell 配置写入失败时，
    链接保持不变，错误中给出手动修复方法。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        homebrew: Homebrew,
        registry: RegistryClient,
        resolver: VersionResolver,
        shell_sync: ShellConfigSynchronizer,
        service_manager: ServiceManager,
        locator: Optional[ProjectLocator] = None,
    ):
        self.config_manager = config_manager
        self.homebrew = homebrew
        self.registry = registry
        self.resolver = resolver
        self.shell_sync = shell_sync
        self.service_manager = service_manager
        self.locator = locator or ProjectLocator()

    @classmethod
    def create(cls, config_manager: ConfigManager, homebrew: Optional[Homebrew] = None) -> "SwitchOrchestrator":
        """
        用默认组件创建编排器。

        参数:
            config_manager: 配置管理器实例
            homebrew: Homebrew 封装实例，None 表示新建

        返回:
            SwitchOrchestrator 实例
        """
        homebrew = homebrew or Homebrew()
        return cls(
            config_manager,
            homebrew,
            RegistryClient(config_manager, homebrew),
            VersionResolver(homebrew),
            ShellConfigSynchronizer(config_manager, homebrew),
            ServiceManager(config_manager, homebrew),
        )

    def _normalize(self, version: str) -> str:
        try:
            return normalize_version(version)
        except InputValidationError as e:
            raise InvalidVersion(str(e), "使用 8.1、php@8.1 或 default 格式") from e

    def switch(self, version: str, install_if_missing: bool = False) -> SwitchResult:
        """
        切换到指定版本。

        参数:
            version: 用户输入的版本标识
            install_if_missing: 未安装时是否先安装

        返回:
            SwitchResult 实例
        """
        result = SwitchResult(version)
        result.enter(SwitchState.VALIDATING)

        try:
            target = self._normalize(version)
        except InvalidVersion as e:
            result.add_error("InvalidVersion", str(e), e.remedy)
            return result.finish()
        result.version = target
        formula = formula_name(target)

        try:
            installed = self.registry.installed_versions()
        except RegistryUnavailable as e:
            result.add_error("RegistryUnavailable", str(e), e.remedy)
            return result.finish()

        if target not in installed:
            if not install_if_missing:
                result.add_error(
                    "VersionNotInstalled",
                    f"PHP {target} ({formula}) 未安装",
                    f"运行 phpswitch install {target} 安装该版本"
                )
                return result.finish()
            result.enter(SwitchState.INSTALLING)
            try:
                self.registry.install(target)
            except InstallFailed as e:
                result.add_error("InstallFailed", str(e), e.remedy)
                return result.finish()

        current = self.resolver.get_linked_version()
        result.previous_version = current

        result.enter(SwitchState.LINKING)
        if current == target:
            logger.info(f"{formula} 已是当前链接版本，跳过链接")
        else:
            try:
                self._relink(current, target, result)
            except LinkFailed as e:
                result.add_error("LinkFailed", str(e), e.remedy)
                return result.finish()

        result.enter(SwitchState.SYNCING_SHELL)
        try:
            result.shell = self.shell_sync.update_config(target)
        except ConfigWriteFailed as e:
            result.add_error("ConfigWriteFailed", str(e), e.remedy)

        result.enter(SwitchState.RECONCILING_SERVICE)
        try:
            result.service = self.service_manager.restart(target)
            result.warnings.extend(result.service["warnings"])
        except ServiceError as e:
            result.warnings.extend(e.warnings)
            warning = error_to_warning(e)
            result.add_warning(warning["code"], warning["message"], warning["remedy"])

        result.enter(SwitchState.VERIFYING)
        self._verify(target, result)
        return result.finish()

    def _relink(self, current: str, target: str, result: SwitchResult) -> None:
        """
        取消链接当前版本并链接目标版本。

        抛出:
            LinkFailed: --force 和 --force --overwrite 都失败
        """
        formula = formula_name(target)
        if current != NO_VERSION:
            unlinked = self.homebrew.unlink(formula_name(current))
            if not unlinked.ok:
                result.add_warning(
                    "UnlinkFailed",
                    unlinked.describe(),
                    f"手动运行 brew unlink {formula_name(current)}"
                )

        linked = self.homebrew.link(formula)
        if linked.ok:
            logger.info(f"已链接 {formula}")
            return

        logger.warning(f"brew link --force {formula} 失败，尝试 --overwrite: {linked.describe()}")
        linked = self.homebrew.link(formula, overwrite=True)
        if not linked.ok:
            raise LinkFailed(linked.describe(), f"手动运行 brew link --force --overwrite {formula}")
        logger.info(f"已使用 --overwrite 链接 {formula}")

    def _verify(self, target: str, result: SwitchResult) -> None:
        active = self.resolver.get_active_version()
        result.active = active
        if active["linked"] == target and active["path_consistent"]:
            logger.info(f"验证通过，当前 PHP 版本 {active['full_version']}")
            return

        dialect = self.shell_sync.dialect()
        rc_file = dialect.locate_startup_file(self.shell_sync.home)
        bin_dirs = self.homebrew.bin_dirs(formula_name(target))
        result.add_warning(
            "PathInconsistency",
            f"PATH 上的 php ({active['binary'] or '未找到'}) 版本为 {active['version']}，"
            f"与目标版本 {target} 不一致",
            f"运行 {dialect.source_hint(rc_file)}，或在当前会话中执行: "
            f"{dialect.session_command(bin_dirs)}"
        )

    def uninstall(self, version: str, force: bool = False) -> List[Dict[str, str]]:
        """
        卸载指定版本。

        参数:
            version: 版本标识
            force: 是否允许卸载当前链接的版本

        返回:
            警告列表

        抛出:
            InvalidVersion: 版本标识无效
            VersionNotInstalled: 版本未安装
            VersionInUse: 版本正在使用且未指定 force
            RegistryUnavailable: 无法查询已安装版本
            UninstallFailed: 卸载失败
        """
        target = self._normalize(version)
        formula = formula_name(target)
        if target not in self.registry.installed_versions():
            raise VersionNotInstalled(f"PHP {target} ({formula}) 未安装")

        linked = self.resolver.get_linked_version()
        if target == linked and not force:
            raise VersionInUse(
                f"PHP {target} 是当前链接的版本",
                "先切换到其他版本，或使用 --force 强制卸载"
            )

        warnings = []
        try:
            self.service_manager.stop(self.service_manager.service_name_for(target))
        except ServiceError as e:
            logger.warning(f"停止 {formula} 服务失败: {e}")
            warnings.append(error_to_warning(e))

        if target == linked:
            unlinked = self.homebrew.unlink(formula)
            if not unlinked.ok:
                warnings.append({
                    "code": "UnlinkFailed",
                    "message": unlinked.describe(),
                    "remedy": f"手动运行 brew unlink {formula}",
                })

        self.registry.uninstall(target)
        return warnings

    def resolve_target(self, explicit: Optional[str], start_dir: Path) -> Optional[Dict[str, Any]]:
        """
        确定要切换到的版本。

        依次使用命令行参数、项目版本文件和 DEFAULT_PHP_VERSION。

        参数:
            explicit: 命令行指定的版本
            start_dir: 查找项目版本文件的起始目录

        返回:
            包含 version 和 source 的字典，都没有时返回 None
        """
        if explicit:
            return {"version": explicit, "source": "argument", "file": None}

        try:
            installed = self.registry.installed_versions()
        except RegistryUnavailable as e:
            logger.warning(f"无法查询已安装版本: {e}")
            installed = []

        pin = self.locator.find_project_version(start_dir, installed)
        if pin:
            return {"version": pin["version"], "source": "project", "file": pin["file"]}

        default = self.config_manager.get_default_version()
        if default:
            return {"version": default, "source": "config", "file": None}
        return None

    def auto_switch(self, start_dir: Path) -> Optional[SwitchResult]:
        """
        根据项目版本文件自动切换。

        只切换到已安装且与当前链接版本不同的版本，不会自动安装。

        参数:
            start_dir: 当前目录

        返回:
            SwitchResult，不需要切换时返回 None

        抛出:
            RegistryUnavailable: 无法查询已安装版本
        """
        installed = self.registry.installed_versions()
        pin = self.locator.find_project_version(start_dir, installed)
        if not pin:
            logger.debug(f"{start_dir} 没有项目版本文件")
            return None

        version = pin["version"]
        if version not in installed:
            logger.warning(f"项目要求的 PHP {version} 未安装 ({pin['file']})")
            return None
        if version == self.resolver.get_linked_version():
            logger.debug(f"PHP {version} 已是当前版本")
            return None

        logger.info(f"根据 {pin['file']} 自动切换到 PHP {version}")
        return self.switch(version)

"""
Homebrew 命令封装模块。

所有 brew 调用都经过这里，每一类调用都有明确的超时时间，
结果以 CommandResult 返回，由调用方决定如何处理失败。
"""

import os
import platform
from pathlib import Path
from typing import List, Optional

from src.utils.logger import get_logger
from src.utils.command_runner import CommandRunner, CommandResult

logger = get_logger()

BREW_TIMEOUT = 30
SEARCH_TIMEOUT = 10
SERVICE_TIMEOUT = 30
VERSION_QUERY_TIMEOUT = 10
INSTALL_TIMEOUT = 1800


def default_prefix() -> Path:
    """
    获取当前平台的 Homebrew 默认安装前缀。

    返回:
        Apple Silicon 为 /opt/homebrew，Intel macOS 为 /usr/local，
        Linux 为 /home/linuxbrew/.linuxbrew
    """
    if platform.system() == "Darwin":
        if platform.machine() == "arm64":
            return Path("/opt/homebrew")
        return Path("/usr/local")
    return Path("/home/linuxbrew/.linuxbrew")


class Homebrew:
    """
    Homebrew 包管理器。

    封装 link、unlink、install、services 等操作。
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        brew: str = "brew",
        prefix: Optional[Path] = None,
    ):
        """
        初始化 Homebrew 封装。

        参数:
            runner: 命令执行器，默认新建 CommandRunner
            brew: brew 可执行文件
            prefix: Homebrew 安装前缀，None 表示自动检测
        """
        self.runner = runner or CommandRunner(default_timeout=BREW_TIMEOUT)
        self.brew = brew
        self._prefix = Path(prefix) if prefix else None

    @property
    def prefix(self) -> Path:
        """
        Homebrew 安装前缀（延迟检测）。

        依次使用 HOMEBREW_PREFIX 环境变量、brew --prefix 和平台默认值。
        """
        if self._prefix is None:
            self._prefix = self._detect_prefix()
        return self._prefix

    def _detect_prefix(self) -> Path:
        from_env = os.environ.get("HOMEBREW_PREFIX", "").strip()
        if from_env:
            logger.debug(f"使用环境变量 HOMEBREW_PREFIX: {from_env}")
            return Path(from_env)

        result = self._brew(["--prefix"], BREW_TIMEOUT)
        if result.ok and result.stdout.strip():
            return Path(result.stdout.strip())

        fallback = default_prefix()
        logger.warning(f"无法获取 Homebrew 前缀，使用默认值 {fallback}: {result.describe()}")
        return fallback

    def opt_dir(self, formula: str) -> Path:
        """获取 formula 的 opt 目录。"""
        return self.prefix / "opt" / formula

    def bin_dirs(self, formula: str) -> List[Path]:
        """获取 formula 的 bin 和 sbin 目录。"""
        opt = self.opt_dir(formula)
        return [opt / "bin", opt / "sbin"]

    def _brew(self, args: List[str], timeout: float) -> CommandResult:
        return self.runner.run([self.brew] + list(args), timeout=timeout)

    def list_formulae(self) -> CommandResult:
        """列出已安装的 formula，每行一个。"""
        return self._brew(["list", "--formula", "-1"], BREW_TIMEOUT)

    def search(self, pattern: str) -> CommandResult:
        """
        在 Homebrew 中搜索 formula。

        参数:
            pattern: 搜索模式，如 /php@[0-9]/

        返回:
            CommandResult 实例
        """
        return self._brew(["search", pattern], SEARCH_TIMEOUT)

    def link(self, formula: str, overwrite: bool = False) -> CommandResult:
        """
        强制链接 formula。

        参数:
            formula: formula 名称
            overwrite: 是否覆盖已存在的文件
        """
        args = ["link", "--force"]
        if overwrite:
            args.append("--overwrite")
        args.append(formula)
        return self._brew(args, BREW_TIMEOUT)

    def unlink(self, formula: str) -> CommandResult:
        """取消链接 formula。"""
        return self._brew(["unlink", formula], BREW_TIMEOUT)

    def install(self, formula: str) -> CommandResult:
        """安装 formula，耗时较长。"""
        return self._brew(["install", formula], INSTALL_TIMEOUT)

    def uninstall(self, formula: str) -> CommandResult:
        """卸载 formula。"""
        return self._brew(["uninstall", formula], INSTALL_TIMEOUT)

    def services_list(self) -> CommandResult:
        """列出 brew services 管理的服务。"""
        return self._brew(["services", "list"], SERVICE_TIMEOUT)

    def services_stop(self, name: str) -> CommandResult:
        """停止服务。"""
        return self._brew(["services", "stop", name], SERVICE_TIMEOUT)

    def services_start(self, name: str) -> CommandResult:
        """启动服务。"""
        return self._brew(["services", "start", name], SERVICE_TIMEOUT)

    def php_version(self, binary: str) -> CommandResult:
        """
        执行 php -v 查询版本。

        参数:
            binary: php 可执行文件路径
        """
        return self.runner.run([str(binary), "-v"], timeout=VERSION_QUERY_TIMEOUT)

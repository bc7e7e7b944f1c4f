"""
版本解析器模块。

确定 Homebrew 当前链接的 PHP 版本，以及 PATH 上实际生效的 PHP 版本。
"""

import os
import re
import shutil
from pathlib import Path
from typing import Optional, List, Dict, Any

from src.utils.logger import get_logger
from src.core.homebrew import Homebrew
from src.core.interfaces import IVersionResolver
from src.core.version_utils import (
    DEFAULT_VERSION,
    NO_VERSION,
    UNKNOWN_VERSION,
    formula_name,
    parse_php_output,
)

logger = get_logger()

LINKED_PATTERN = re.compile(r'php@(\d+\.\d+)')


def read_linked_version(prefix: Path) -> str:
    """
    读取 <prefix>/bin/php 符号链接对应的版本。

    参数:
        prefix: Homebrew 安装前缀

    返回:
        版本标识，没有链接时返回 "none"
    """
    link = Path(prefix) / "bin" / "php"
    try:
        target = os.readlink(link)
    except OSError:
        return NO_VERSION

    match = LINKED_PATTERN.search(target)
    if match:
        return match.group(1)
    if "/php/" in target:
        return DEFAULT_VERSION
    return NO_VERSION


class VersionResolver(IVersionResolver):
    """
    版本解析器类。

    实现 IVersionResolver 抽象接口。
    """

    def __init__(self, homebrew: Homebrew, search_path: Optional[str] = None):
        """
        初始化版本解析器。

        参数:
            homebrew: Homebrew 封装实例
            search_path: 查找 php 的 PATH，None 表示使用当前环境变量
        """
        self.homebrew = homebrew
        self.search_path = search_path

    def _path(self) -> str:
        if self.search_path is not None:
            return self.search_path
        return os.environ.get("PATH", os.defpath)

    def get_linked_version(self) -> str:
        """获取 Homebrew 当前链接的版本。"""
        return read_linked_version(self.homebrew.prefix)

    def query_binary(self, binary: str) -> Optional[Dict[str, str]]:
        """
        执行 php -v 并解析版本。

        参数:
            binary: php 可执行文件路径

        返回:
            包含 version 和 full_version 的字典，失败返回 None
        """
        result = self.homebrew.php_version(binary)
        if not result.ok:
            logger.debug(f"无法获取 {binary} 的版本: {result.describe()}")
            return None
        return parse_php_output(result.stdout)

    def expected_version(self, linked: str) -> Optional[str]:
        """
        获取链接版本对应的 X.Y 版本号。

        default 需要查询 opt/php 下的二进制文件。

        参数:
            linked: 链接的版本标识

        返回:
            X.Y 版本号，无法确定时返回 None
        """
        if linked in (NO_VERSION, UNKNOWN_VERSION):
            return None
        if linked != DEFAULT_VERSION:
            return linked
        binary = self.homebrew.opt_dir(formula_name(DEFAULT_VERSION)) / "bin" / "php"
        if not binary.exists():
            return None
        parsed = self.query_binary(str(binary))
        return parsed["version"] if parsed else None

    def get_active_version(self) -> Dict[str, Any]:
        """
        获取 PATH 上实际生效的 PHP 版本。

        不抛出异常，找不到或无法执行 php 时 version 为 "unknown"。

        返回:
            包含 version、full_version、binary、linked、expected、path_consistent 的字典
        """
        linked = self.get_linked_version()
        expected = self.expected_version(linked)
        active: Dict[str, Any] = {
            "version": UNKNOWN_VERSION,
            "full_version": None,
            "binary": None,
            "linked": linked,
            "expected": expected,
            "path_consistent": False,
        }

        binary = shutil.which("php", path=self._path())
        if not binary:
            logger.debug("PATH 上找不到 php")
            return active
        active["binary"] = binary

        parsed = self.query_binary(binary)
        if not parsed:
            return active

        active["version"] = parsed["version"]
        active["full_version"] = parsed["full_version"]
        active["path_consistent"] = expected is not None and parsed["version"] == expected
        if not active["path_consistent"]:
            logger.debug(f"生效版本 {parsed['version']} 与链接版本 {linked} 不一致")
        return active

    def find_path_binaries(self) -> List[Dict[str, Any]]:
        """
        查找 PATH 上所有可执行的 php。

        返回:
            包含 binary、version、full_version 的字典列表，按 PATH 顺序排列
        """
        found = []
        seen = set()
        for directory in self._path().split(os.pathsep):
            if not directory:
                continue
            candidate = os.path.join(directory, "php")
            if candidate in seen:
                continue
            seen.add(candidate)
            if not (os.path.isfile(candidate) and os.access(candidate, os.X_OK)):
                continue
            parsed = self.query_binary(candidate)
            found.append({
                "binary": candidate,
                "version": parsed["version"] if parsed else UNKNOWN_VERSION,
                "full_version": parsed["full_version"] if parsed else None,
            })
        return found

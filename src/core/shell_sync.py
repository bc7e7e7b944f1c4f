"""
shell 配置同步模块。

维护用户 shell 启动文件中由 phpswitch 管理的配置块，
负责备份、原子写入和旧备份清理。
"""

import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple

from src.utils.logger import get_logger
from src.utils.input_validator import InputValidator
from src.core.config_manager import ConfigManager, _atomic_write_text
from src.core.homebrew import Homebrew
from src.core.interfaces import IShellConfigSynchronizer
from src.core.shell_dialects import ShellDialect, get_dialect
from src.core.version_utils import formula_name

logger = get_logger()

BEGIN_MARKER = "# BEGIN PHPSWITCH MANAGED BLOCK - DO NOT EDIT MANUALLY"
END_MARKER = "# END PHPSWITCH MANAGED BLOCK"
AUTO_BEGIN_MARKER = "# BEGIN PHPSWITCH AUTO-SWITCH - DO NOT EDIT MANUALLY"
AUTO_END_MARKER = "# END PHPSWITCH AUTO-SWITCH"

BACKUP_MODE = 0o600
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S%f"


class ShellSyncError(Exception):
    """shell 配置同步错误异常基类。"""

    def __init__(self, message: str, remedy: Optional[str] = None):
        super().__init__(message)
        self.remedy = remedy


class ConfigWriteFailed(ShellSyncError):
    """shell 启动文件写入失败异常。"""

    def __init__(self, message: str, path: Path):
        super().__init__(message, f"请检查 {path} 的权限")
        self.path = path


class UnsupportedShell(ShellSyncError):
    """shell 不支持该操作异常。"""
    pass


def detect_shell(env: Optional[Dict[str, str]] = None) -> str:
    """
    检测用户使用的 shell。

    参数:
        env: 环境变量字典，默认为 os.environ

    返回:
        "bash"、"zsh"、"fish" 或 "unknown"
    """
    env = os.environ if env is None else env
    if env.get("FISH_VERSION"):
        return "fish"
    if env.get("ZSH_VERSION"):
        return "zsh"
    if env.get("BASH_VERSION"):
        return "bash"

    shell_name = os.path.basename(env.get("SHELL", "").strip())
    for name in ("zsh", "bash", "fish"):
        if shell_name.endswith(name):
            return name
    return "unknown"


def replace_managed_block(content: str, begin: str, end: str, block: List[str]) -> str:
    """
    用新的配置块替换文本中的托管块。

    第一个完整的托管块原地替换，其余完整托管块删除。
    没有托管块时追加到文件末尾。缺少结束标记的开始标记原样保留。

    参数:
        content: 原始文本
        begin: 开始标记
        end: 结束标记
        block: 新配置块的所有行（含标记行）

    返回:
        新文本
    """
    lines = content.splitlines()
    spans = []
    index = 0
    while index < len(lines):
        if lines[index].strip() == begin:
            close = None
            for j in range(index + 1, len(lines)):
                marker = lines[j].strip()
                if marker == end:
                    close = j
                    break
                if marker == begin:
                    break
            if close is None:
                logger.warning(f"发现没有结束标记的托管块（第 {index + 1} 行），保持原样")
                index += 1
                continue
            spans.append((index, close))
            index = close + 1
            continue
        index += 1

    if not spans:
        result = list(lines)
        if result and result[-1].strip():
            result.append("")
        result.extend(block)
        return "\n".join(result) + "\n"

    result = []
    cursor = 0
    for number, (start, stop) in enumerate(spans):
        result.extend(lines[cursor:start])
        if number == 0:
            result.extend(block)
        cursor = stop + 1
    result.extend(lines[cursor:])
    return "\n".join(result) + "\n"


class ShellConfigSynchronizer(IShellConfigSynchronizer):
    """
    shell 配置同步器类。

    实现 IShellConfigSynchronizer 抽象接口。
    """

    BACKUP_PATTERN = re.compile(r'\.bak\.(\d{14,20})(?:\.(\d+))?$')

    def __init__(
        self,
        config_manager: ConfigManager,
        homebrew: Homebrew,
        home: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
    ):
        """
        初始化 shell 配置同步器。

        参数:
            config_manager: 配置管理器实例
            homebrew: Homebrew 封装实例
            home: 用户主目录，默认与配置管理器一致
            env: 环境变量字典，默认为 os.environ
        """
        self.config_manager = config_manager
        self.homebrew = homebrew
        self.home = Path(home) if home else config_manager.home
        self.env = env

    def detect_shell(self) -> str:
        """检测当前用户的 shell 类型。"""
        return detect_shell(self.env)

    def dialect(self) -> ShellDialect:
        """获取当前 shell 的方言。"""
        return get_dialect(self.detect_shell())

    def startup_file(self) -> Path:
        """获取当前 shell 的启动文件。"""
        return self.dialect().locate_startup_file(self.home)

    def update_config(self, version: str) -> Dict[str, Any]:
        """
        更新 shell 启动文件中的 PATH 托管块。

        参数:
            version: 版本标识

        返回:
            包含 shell、rc_file、changed、backup、source_hint、session_command 的字典

        抛出:
            ConfigWriteFailed: 读取、备份或写入失败
        """
        dialect = self.dialect()
        rc_file = dialect.locate_startup_file(self.home)
        bin_dirs = self.homebrew.bin_dirs(formula_name(version))
        for directory in bin_dirs:
            InputValidator.validate_path(str(directory))

        block = [BEGIN_MARKER, f"# PHP version: {version}"]
        block.extend(dialect.render_path_directive(bin_dirs))
        block.append(END_MARKER)

        logger.debug(f"检测到 shell: {dialect.name}，启动文件: {rc_file}")
        changed, backup = self._apply_block(rc_file, BEGIN_MARKER, END_MARKER, block)
        return {
            "shell": dialect.name,
            "rc_file": rc_file,
            "changed": changed,
            "backup": backup,
            "source_hint": dialect.source_hint(rc_file),
            "session_command": dialect.session_command(bin_dirs),
        }

    def install_auto_switch(self) -> Dict[str, Any]:
        """
        在启动文件中写入目录切换钩子块。

        返回:
            包含 shell、rc_file、changed、backup 的字典

        抛出:
            UnsupportedShell: 当前 shell 不支持钩子
            ConfigWriteFailed: 写入失败
        """
        dialect = self.dialect()
        hook = dialect.render_auto_switch_hook()
        if not dialect.supports_hooks or hook is None:
            raise UnsupportedShell(
                f"不支持为 {dialect.name} shell 安装自动切换",
                "自动切换只支持 bash、zsh 和 fish"
            )

        rc_file = dialect.locate_startup_file(self.home)
        block = [AUTO_BEGIN_MARKER] + hook + [AUTO_END_MARKER]
        changed, backup = self._apply_block(rc_file, AUTO_BEGIN_MARKER, AUTO_END_MARKER, block)
        return {
            "shell": dialect.name,
            "rc_file": rc_file,
            "changed": changed,
            "backup": backup,
            "source_hint": dialect.source_hint(rc_file),
        }

    def _apply_block(
        self, rc_file: Path, begin: str, end: str, block: List[str]
    ) -> Tuple[bool, Optional[Path]]:
        """
        把配置块写入启动文件。

        内容没有变化时不写入也不备份。

        返回:
            (是否写入, 备份文件路径)
        """
        try:
            original = rc_file.read_text(encoding="utf-8") if rc_file.exists() else ""
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigWriteFailed(f"无法读取 {rc_file}: {e}", rc_file) from e

        updated = replace_managed_block(original, begin, end, block)
        if updated == original:
            logger.info(f"{rc_file} 已是最新，无需修改")
            return False, None

        backup = None
        try:
            rc_file.parent.mkdir(parents=True, exist_ok=True)
            if rc_file.exists() and self.config_manager.get_backup_enabled():
                backup = self._create_backup(rc_file)
            _atomic_write_text(rc_file, updated)
        except OSError as e:
            logger.error(f"写入 {rc_file} 失败: {e}")
            if backup is not None:
                self._discard_backup(backup)
            raise ConfigWriteFailed(f"无法写入 {rc_file}: {e}", rc_file) from e

        logger.info(f"已更新 {rc_file}")
        if backup is not None:
            self.prune_backups(rc_file)
        return True, backup

    def _create_backup(self, rc_file: Path) -> Path:
        """
        复制启动文件为带时间戳的备份，权限为 0600。

        返回:
            备份文件路径
        """
        stamp = datetime.now().strftime(BACKUP_TIMESTAMP_FORMAT)
        backup = rc_file.with_name(f"{rc_file.name}.bak.{stamp}")
        counter = 1
        while backup.exists():
            backup = rc_file.with_name(f"{rc_file.name}.bak.{stamp}.{counter}")
            counter += 1
        shutil.copyfile(rc_file, backup)
        os.chmod(backup, BACKUP_MODE)
        logger.info(f"已创建备份: {backup}")
        return backup

    def _discard_backup(self, backup: Path) -> None:
        """删除写入失败时多出的备份，原文件未被修改。"""
        try:
            backup.unlink()
            logger.debug(f"写入失败，已删除备份: {backup}")
        except OSError as e:
            logger.warning(f"删除备份失败 {backup}: {e}")

    def list_backups(self, rc_file: Path) -> List[Path]:
        """
        列出启动文件的所有备份。

        参数:
            rc_file: 启动文件路径

        返回:
            备份路径列表，从旧到新排列
        """
        if not rc_file.parent.is_dir():
            return []
        backups = []
        for candidate in rc_file.parent.glob(f"{rc_file.name}.bak.*"):
            suffix = candidate.name[len(rc_file.name):]
            match = self.BACKUP_PATTERN.fullmatch(suffix)
            if match:
                stamp, counter = match.groups()
                # 14 位时间戳没有微秒部分，补齐后再比较
                backups.append(((stamp.ljust(20, "0"), int(counter or 0)), candidate))
        return [path for _, path in sorted(backups)]

    def prune_backups(self, rc_file: Path, keep: Optional[int] = None) -> List[Path]:
        """
        删除超出保留数量的旧备份。

        参数:
            rc_file: 启动文件路径
            keep: 保留数量，默认为 MAX_BACKUPS

        返回:
            已删除的备份路径列表
        """
        keep = self.config_manager.get_max_backups() if keep is None else keep
        backups = self.list_backups(rc_file)
        excess = backups[:max(len(backups) - keep, 0)]
        removed = []
        for backup in excess:
            try:
                backup.unlink()
                removed.append(backup)
                logger.debug(f"已删除旧备份: {backup}")
            except OSError as e:
                logger.warning(f"删除旧备份失败 {backup}: {e}")
        return removed

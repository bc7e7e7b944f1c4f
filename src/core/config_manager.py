"""
配置管理器模块。

提供 ~/.phpswitch.conf 的加载、默认值回退和原子保存功能。
"""

import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from src.utils.logger import get_logger
from src.core.interfaces import IConfigManager
from src.utils.input_validator import InputValidator, InputValidationError
from src.core.version_utils import normalize_version

logger = get_logger()

CONFIG_FILE_NAME = ".phpswitch.conf"
LINE_PATTERN = re.compile(r'^\s*([A-Z_][A-Z0-9_]*)\s*=\s*(.*?)\s*$')
NEW_FILE_MODE = 0o666

TRUE_VALUES = ("true", "yes", "1", "on")
FALSE_VALUES = ("false", "no", "0", "off")


class ConfigSaveError(Exception):
    """配置保存错误异常。"""
    pass


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _atomic_write_text(file_path: Path, content: str) -> None:
    """
    原子写入文本文件，防止写入中断导致文件损坏。

    先写入同目录下的临时文件，再用 os.replace 替换目标文件。
    目标文件已存在时保留其权限位，新文件按 umask 设置权限。

    参数:
        file_path: 目标文件路径
        content: 要写入的文本
    """
    directory = file_path.parent
    fd, temp_name = tempfile.mkstemp(prefix=f".{file_path.name}.", suffix=".tmp", dir=str(directory))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if file_path.exists():
            os.chmod(temp_name, file_path.stat().st_mode & 0o7777)
        else:
            os.chmod(temp_name, NEW_FILE_MODE & ~_current_umask())
        os.replace(temp_name, file_path)
    except BaseException:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


def _parse_bool(value: str) -> Optional[bool]:
    lowered = value.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    return None


def _parse_int(value: str) -> Optional[int]:
    try:
        number = int(value)
    except ValueError:
        return None
    return number if number >= 0 else None


def _parse_version(value: str) -> Optional[str]:
    if value == "":
        return ""
    try:
        return normalize_version(value)
    except InputValidationError:
        return None


def _parse_path(value: str) -> Optional[str]:
    if value == "":
        return ""
    try:
        InputValidator.validate_path(value)
    except InputValidationError:
        return None
    return os.path.expanduser(value)


class ConfigManager(IConfigManager):
    """
    配置管理器类。

    每次运行只从 ~/.phpswitch.conf 加载一次，之后只读。
    文件不存在、缺少键或行格式错误时静默使用默认值。
    实现 IConfigManager 抽象接口。
    """

    DEFAULTS: Dict[str, Any] = {
        "AUTO_RESTART_PHP_FPM": True,
        "BACKUP_CONFIG_FILES": True,
        "DEFAULT_PHP_VERSION": "",
        "MAX_BACKUPS": 5,
        "AUTO_SWITCH_PHP_VERSION": False,
        "CACHE_DIRECTORY": "",
    }

    PARSERS = {
        "AUTO_RESTART_PHP_FPM": _parse_bool,
        "BACKUP_CONFIG_FILES": _parse_bool,
        "DEFAULT_PHP_VERSION": _parse_version,
        "MAX_BACKUPS": _parse_int,
        "AUTO_SWITCH_PHP_VERSION": _parse_bool,
        "CACHE_DIRECTORY": _parse_path,
    }

    def __init__(self, config_file: Optional[Path] = None, home: Optional[Path] = None):
        """
        初始化配置管理器。

        参数:
            config_file: 配置文件路径，默认为 ~/.phpswitch.conf
            home: 用户主目录，默认为当前用户主目录
        """
        self.home = Path(home) if home else Path(os.path.expanduser("~"))
        self.config_file = Path(config_file) if config_file else self.home / CONFIG_FILE_NAME
        self._config: Dict[str, Any] = {}

    def load_config(self) -> Dict[str, Any]:
        """
        加载配置文件。

        返回:
            配置字典（已填充默认值）
        """
        config = dict(self.DEFAULTS)
        if not self.config_file.exists():
            logger.debug(f"配置文件不存在，使用默认配置: {self.config_file}")
            self._config = config
            return self._config

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except (IOError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"读取配置文件失败，使用默认配置: {e}")
            self._config = config
            return self._config

        logger.debug(f"从文件加载配置: {self.config_file}")
        for number, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            parsed = self._parse_line(line)
            if parsed is None:
                logger.debug(f"忽略格式错误的配置行 {number}: {line}")
                continue
            key, value = parsed
            if key not in self.PARSERS:
                logger.debug(f"忽略未知配置项 {key}")
                continue
            converted = self.PARSERS[key](value)
            if converted is None:
                logger.warning(f"配置项 {key} 的值无效: {value!r}，使用默认值 {self.DEFAULTS[key]!r}")
                continue
            config[key] = converted

        self._config = config
        logger.debug("配置加载成功")
        return self._config

    def _parse_line(self, line: str) -> Optional[tuple]:
        """
        解析一行 KEY=value。

        参数:
            line: 去除首尾空白后的配置行

        返回:
            (key, value) 元组，格式错误返回 None
        """
        if line.startswith("export "):
            line = line[len("export "):]
        match = LINE_PATTERN.match(line)
        if not match:
            return None
        key, value = match.groups()
        if value[:1] in ('"', "'"):
            quote = value[0]
            end = value.find(quote, 1)
            if end == -1:
                return None
            value = value[1:end]
        else:
            value = value.split("#", 1)[0].strip()
        return key, value

    @property
    def config(self) -> Dict[str, Any]:
        """
        获取配置字典（延迟加载）。

        返回:
            配置字典
        """
        if not self._config:
            self.load_config()
        return self._config

    def get_config(self) -> Dict[str, Any]:
        """获取配置字典。"""
        return self.config

    def get_auto_restart_fpm(self) -> bool:
        """切换版本后是否自动重启 PHP-FPM 服务。"""
        return bool(self.config["AUTO_RESTART_PHP_FPM"])

    def get_backup_enabled(self) -> bool:
        """修改 shell 配置文件前是否创建备份。"""
        return bool(self.config["BACKUP_CONFIG_FILES"])

    def get_max_backups(self) -> int:
        """每个 shell 配置文件保留的最大备份数量。"""
        return int(self.config["MAX_BACKUPS"])

    def get_default_version(self) -> Optional[str]:
        """
        获取默认 PHP 版本。

        返回:
            版本标识，未设置返回 None
        """
        return self.config["DEFAULT_PHP_VERSION"] or None

    def get_auto_switch(self) -> bool:
        """是否启用基于目录的自动切换。"""
        return bool(self.config["AUTO_SWITCH_PHP_VERSION"])

    def get_cache_dir(self) -> Path:
        """
        获取缓存目录。

        返回:
            CACHE_DIRECTORY 配置值，未设置时为 ~/.cache/phpswitch
        """
        configured = self.config["CACHE_DIRECTORY"]
        if configured:
            return Path(configured)
        return self.home / ".cache" / "phpswitch"

    def render_default_config(self) -> str:
        """
        生成默认配置文件内容。

        返回:
            配置文件文本
        """
        return (
            "# PHPSwitch Configuration\n"
            "AUTO_RESTART_PHP_FPM=true\n"
            "BACKUP_CONFIG_FILES=true\n"
            "DEFAULT_PHP_VERSION=\"\"\n"
            "MAX_BACKUPS=5\n"
            "AUTO_SWITCH_PHP_VERSION=false\n"
            "CACHE_DIRECTORY=\"\"\n"
        )

    def create_default_config(self) -> bool:
        """
        配置文件不存在时创建默认配置文件。

        返回:
            新建返回 True，已存在返回 False
        """
        if self.config_file.exists():
            return False
        try:
            _atomic_write_text(self.config_file, self.render_default_config())
        except OSError as e:
            logger.error(f"创建默认配置失败: {e}")
            raise ConfigSaveError(f"无法创建配置文件 {self.config_file}: {e}") from e
        logger.info(f"已创建默认配置: {self.config_file}")
        return True

    def set_value(self, key: str, value: Any) -> None:
        """
        修改单个配置项并原子保存，保留文件中的其他行。

        参数:
            key: 配置键名
            value: 配置值

        抛出:
            KeyError: 未知配置项
            ConfigSaveError: 保存失败
        """
        if key not in self.DEFAULTS:
            raise KeyError(f"未知配置项: {key}")

        if isinstance(value, bool):
            text = "true" if value else "false"
        elif value is None:
            text = '""'
        else:
            text = str(value)
            if text == "" or " " in text:
                text = f'"{text}"'
        new_line = f"{key}={text}\n"

        lines = []
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    lines = f.readlines()
            except (IOError, OSError) as e:
                raise ConfigSaveError(f"无法读取配置文件 {self.config_file}: {e}") from e
        else:
            lines = self.render_default_config().splitlines(keepends=True)

        replaced = False
        for index, raw in enumerate(lines):
            parsed = self._parse_line(raw.strip()) if raw.strip() and not raw.strip().startswith("#") else None
            if parsed and parsed[0] == key:
                lines[index] = new_line
                replaced = True
        if not replaced:
            if lines and not lines[-1].endswith("\n"):
                lines[-1] += "\n"
            lines.append(new_line)

        try:
            _atomic_write_text(self.config_file, "".join(lines))
        except OSError as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigSaveError(f"无法保存配置到 {self.config_file}: {e}") from e

        self.load_config()
        logger.info(f"已设置配置项 {key}={text}")

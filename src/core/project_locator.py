"""
项目版本定位模块。

从指定目录向上查找 .php-version 等版本文件，确定项目要求的 PHP 版本。
"""

import os
import re
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterator

from src.utils.logger import get_logger
from src.utils.input_validator import InputValidator, InputValidationError
from src.core.config_manager import _atomic_write_text
from src.core.version_utils import normalize_version, highest_minor

logger = get_logger()

PIN_FILES = (".php-version", ".phpversion", ".php")
PIN_FILE_NAME = ".php-version"
MAJOR_ONLY_PATTERN = re.compile(r'^(?:php@)?(\d+)$', re.IGNORECASE)


class ProjectFileError(Exception):
    """项目版本文件错误异常。"""
    pass


def parse_pin(text: str, installed: Optional[List[str]] = None) -> str:
    """
    解析版本文件内容。

    php@8.1 和 8.1 都解析为 8.1，default 和 php 解析为 default。
    只有主版本号时取已安装的最高次版本，没有安装则为 X.0。

    参数:
        text: 版本文件内容
        installed: 已安装的版本标识列表

    返回:
        版本标识

    抛出:
        InputValidationError: 内容无效
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        raise InputValidationError("版本文件为空")
    value = lines[0]
    InputValidator.validate_version_string(value)

    major = MAJOR_ONLY_PATTERN.match(value)
    if major:
        number = str(int(major.group(1)))
        return highest_minor(number, installed or []) or f"{number}.0"
    return normalize_version(value)


class ProjectLocator:
    """项目版本定位器类。"""

    def _candidate_files(self, start_dir: Path) -> Iterator[Path]:
        """
        从 start_dir 逐级向上，按优先级产出存在的版本文件。

        真实路径已访问过的目录直接跳过，符号链接环不会导致重复读取。
        """
        current = Path(os.path.abspath(start_dir))
        visited = set()
        while True:
            real = os.path.realpath(current)
            if real in visited:
                logger.debug(f"目录已访问过，跳过: {current} -> {real}")
            else:
                visited.add(real)
                for name in PIN_FILES:
                    candidate = current / name
                    if candidate.is_file():
                        yield candidate
            parent = current.parent
            if parent == current:
                return
            current = parent

    def find_project_file(self, start_dir: Path) -> Optional[Path]:
        """
        查找最近的版本文件。

        参数:
            start_dir: 起始目录

        返回:
            版本文件路径，找不到返回 None
        """
        return next(self._candidate_files(start_dir), None)

    def find_project_version(
        self, start_dir: Path, installed: Optional[List[str]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        查找项目要求的 PHP 版本。

        无法读取或内容无效的版本文件会记录警告并跳过。

        参数:
            start_dir: 起始目录
            installed: 已安装的版本标识列表，用于解析只有主版本号的情况

        返回:
            包含 version 和 file 的字典，找不到返回 None
        """
        for pin_file in self._candidate_files(start_dir):
            try:
                text = pin_file.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"无法读取版本文件 {pin_file}: {e}")
                continue
            try:
                version = parse_pin(text, installed)
            except InputValidationError as e:
                logger.warning(f"版本文件 {pin_file} 内容无效: {e}")
                continue
            logger.debug(f"在 {pin_file} 中找到项目版本 {version}")
            return {"version": version, "file": pin_file}
        return None

    def set_project_version(self, directory: Path, version: str) -> Path:
        """
        在目录中写入 .php-version。

        参数:
            directory: 项目目录
            version: 版本标识

        返回:
            版本文件路径

        抛出:
            InputValidationError: 版本无效
            ProjectFileError: 写入失败
        """
        token = normalize_version(version)
        pin_file = Path(directory) / PIN_FILE_NAME
        try:
            _atomic_write_text(pin_file, f"{token}\n")
        except OSError as e:
            logger.error(f"写入 {pin_file} 失败: {e}")
            raise ProjectFileError(f"无法写入 {pin_file}: {e}") from e
        logger.info(f"已将项目版本设置为 {token}: {pin_file}")
        return pin_file

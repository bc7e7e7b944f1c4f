"""
输入验证模块。

提供用户输入、项目版本文件和配置值的验证和 sanitization 功能。
这些值最终会作为 brew 命令参数或路径使用。
"""

import re

from src.utils.logger import get_logger

logger = get_logger()


class InputValidationError(Exception):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    提供用户输入的验证和 sanitization 功能。
    """

    VERSION_PATTERN = re.compile(r'^(?:php@)?(?:\d+(?:\.\d+){0,2}|default)$|^php$', re.IGNORECASE)
    MAX_PATH_LENGTH = 4096
    MAX_VERSION_LENGTH = 32

    @classmethod
    def validate_version_string(cls, version: str) -> bool:
        """
        验证版本标识字符串的有效性。

        可接受 8.1、php@8.1、php、default、php@default 以及主版本号 8。

        参数:
            version: 版本标识字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if version is None or not str(version).strip():
            raise InputValidationError("版本号不能为空")

        version = str(version).strip()

        if len(version) > cls.MAX_VERSION_LENGTH:
            raise InputValidationError(f"版本号不能超过 {cls.MAX_VERSION_LENGTH} 个字符")

        if not cls.VERSION_PATTERN.match(version):
            raise InputValidationError(
                f"版本号格式无效: {version}（请使用 8.1 或 php@8.1 格式）"
            )

        return True

    @classmethod
    def sanitize_version_string(cls, version: str) -> str:
        """
        sanitize 版本号字符串。

        参数:
            version: 原始版本号

        返回:
            去除空白并转为小写后的版本号
        """
        if not version:
            return ""
        return "".join(str(version).split()).lower()

    @classmethod
    def validate_path(cls, path: str) -> bool:
        """
        验证路径的有效性。

        参数:
            path: 路径字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if path is None:
            return True

        if len(path) > cls.MAX_PATH_LENGTH:
            raise InputValidationError(f"路径不能超过 {cls.MAX_PATH_LENGTH} 个字符")

        if "\x00" in path or "\n" in path:
            raise InputValidationError("路径包含非法字符")

        return True

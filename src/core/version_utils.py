"""
版本工具模块。

提供版本标识的规范化、formula 名称映射、解析和排序等工具函数。
"""

import re
from typing import List, Dict, Any, Optional

from src.utils.input_validator import InputValidator, InputValidationError

DEFAULT_VERSION = "default"
NO_VERSION = "none"
UNKNOWN_VERSION = "unknown"

FORMULA_BASE = "php"
FORMULA_PATTERN = re.compile(r'^php(?:@(\d+\.\d+))?$')
PHP_OUTPUT_PATTERN = re.compile(r'PHP (\d+)\.(\d+)\.(\d+)')


def normalize_version(text: str) -> str:
    """
    将用户输入规范化为版本标识。

    参数:
        text: 8.1、php@8.1、php、default 等形式的版本文本

    返回:
        规范化的版本标识，如 "8.1" 或 "default"

    抛出:
        InputValidationError: 格式无效，或只给出主版本号时
    """
    InputValidator.validate_version_string(text)
    value = InputValidator.sanitize_version_string(text)

    if value in ("php", "default", "php@default"):
        return DEFAULT_VERSION
    if value.startswith("php@"):
        value = value[len("php@"):]

    parts = value.split(".")
    if len(parts) < 2:
        raise InputValidationError(f"版本号需包含次版本号: {text}（例如 8.1）")
    return f"{int(parts[0])}.{int(parts[1])}"


def formula_name(version: str) -> str:
    """
    获取版本标识对应的 formula 名称。

    参数:
        version: 版本标识

    返回:
        formula 名称，default 对应无后缀的 php
    """
    if version == DEFAULT_VERSION:
        return FORMULA_BASE
    return f"{FORMULA_BASE}@{version}"


def version_from_formula(formula: str) -> Optional[str]:
    """
    从 formula 名称解析版本标识。

    参数:
        formula: formula 名称，如 php@8.1 或 php

    返回:
        版本标识，不是 PHP formula 时返回 None
    """
    match = FORMULA_PATTERN.match(formula.strip())
    if not match:
        return None
    return match.group(1) or DEFAULT_VERSION


def parse_php_output(output: str) -> Optional[Dict[str, str]]:
    """
    解析 php -v 的输出。

    参数:
        output: php -v 的输出文本

    返回:
        包含 version（X.Y）和 full_version（X.Y.Z）的字典，解析失败返回 None
    """
    match = PHP_OUTPUT_PATTERN.search(output or "")
    if not match:
        return None
    major, minor, patch = match.groups()
    return {
        "version": f"{major}.{minor}",
        "full_version": f"{major}.{minor}.{patch}",
    }


def _parse_version(version_str: str) -> tuple:
    """
    解析版本字符串为可比较的元组。

    参数:
        version_str: 版本字符串

    返回:
        版本元组 (major, minor, ...)，default 排在最前
    """
    if version_str == DEFAULT_VERSION:
        return (float("inf"),)
    parts = re.findall(r'\d+', version_str)
    return tuple(int(p) for p in parts) if parts else (0,)


def sort_versions_desc(versions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    按版本号降序排列版本列表。

    参数:
        versions: 版本信息列表

    返回:
        排序后的版本列表
    """
    return sorted(
        versions,
        key=lambda v: _parse_version(v.get("version", "0")),
        reverse=True
    )


def highest_minor(major: str, versions: List[str]) -> Optional[str]:
    """
    在版本列表中查找指定主版本号下最高的次版本。

    参数:
        major: 主版本号，如 "8"
        versions: 版本标识列表

    返回:
        最高的 X.Y 版本标识，没有匹配返回 None
    """
    candidates = [v for v in versions if v.split(".")[0] == major and v != DEFAULT_VERSION]
    if not candidates:
        return None
    return max(candidates, key=_parse_version)

"""
PHPSwitch 工具模块。

提供日志记录、外部命令执行和输入验证等工具功能。
"""

from .logger import get_logger, setup_logger, set_log_level
from .command_runner import CommandRunner, CommandResult
from .input_validator import InputValidator, InputValidationError

__all__ = [
    "get_logger",
    "setup_logger",
    "set_log_level",
    "CommandRunner",
    "CommandResult",
    "InputValidator",
    "InputValidationError",
]

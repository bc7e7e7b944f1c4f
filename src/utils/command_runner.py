"""
外部命令执行模块。

所有外部进程（brew、php 等）都通过这里执行，每次调用必须带超时，
并返回结构化结果，而不是抛出 subprocess 异常。
"""

import subprocess
from typing import List, Optional, Dict

from src.utils.logger import get_logger

logger = get_logger()

DEFAULT_TIMEOUT = 30


class CommandResult:
    """
    外部命令执行结果。

    记录标准输出、标准错误、退出码，以及是否超时或无法启动。
    """

    def __init__(
        self,
        args: List[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        error: Optional[str] = None,
    ):
        self.args = list(args)
        self.returncode = returncode
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        self.timed_out = timed_out
        self.error = error

    @property
    def ok(self) -> bool:
        """命令正常结束且退出码为 0。"""
        return not self.timed_out and self.error is None and self.returncode == 0

    @property
    def output(self) -> str:
        """标准输出与标准错误合并后的文本。"""
        return self.stdout + self.stderr

    def describe(self) -> str:
        """
        生成用于日志和错误信息的简短诊断文本。

        返回:
            诊断字符串
        """
        command = " ".join(self.args)
        if self.timed_out:
            return f"命令超时: {command}"
        if self.error:
            return f"命令无法执行: {command} ({self.error})"
        detail = (self.stderr or self.stdout).strip()
        if detail:
            return f"命令失败 (退出码 {self.returncode}): {command}: {detail}"
        return f"命令失败 (退出码 {self.returncode}): {command}"

    def __repr__(self) -> str:
        return (
            f"CommandResult(args={self.args!r}, returncode={self.returncode}, "
            f"timed_out={self.timed_out})"
        )


class CommandRunner:
    """
    外部命令执行器。

    超时后子进程会被终止，结果中 timed_out 为 True。
    """

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT, env: Optional[Dict[str, str]] = None):
        """
        初始化命令执行器。

        参数:
            default_timeout: 默认超时时间（秒）
            env: 子进程环境变量，None 表示继承当前进程
        """
        self.default_timeout = default_timeout
        self.env = env

    def run(self, args: List[str], timeout: Optional[float] = None) -> CommandResult:
        """
        执行外部命令。

        参数:
            args: 命令及参数列表
            timeout: 超时时间（秒），None 使用默认值

        返回:
            CommandResult 实例
        """
        limit = timeout if timeout is not None else self.default_timeout
        logger.debug(f"执行命令 (超时 {limit} 秒): {' '.join(args)}")
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=limit,
                env=self.env,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"命令执行超时 ({limit} 秒): {' '.join(args)}")
            return CommandResult(
                args,
                returncode=-1,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                timed_out=True,
            )
        except FileNotFoundError as e:
            logger.debug(f"可执行文件不存在: {args[0]}")
            return CommandResult(args, returncode=127, error=str(e))
        except PermissionError as e:
            logger.error(f"权限不足，无法执行命令: {e}")
            return CommandResult(args, returncode=126, error=str(e))
        except OSError as e:
            logger.error(f"执行命令失败: {e}")
            return CommandResult(args, returncode=1, error=str(e))

        result = CommandResult(args, completed.returncode, completed.stdout, completed.stderr)
        if not result.ok:
            logger.debug(result.describe())
        return result


def _decode(data) -> str:
    """TimeoutExpired 中的输出可能是 bytes。"""
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data

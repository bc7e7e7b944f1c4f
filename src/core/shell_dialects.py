"""
shell 方言模块。

不同 shell 的启动文件位置、PATH 写法和目录切换钩子各不相同，
每种 shell 由一个方言类负责生成对应的配置文本。
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, List


def _posix_quote(text: str) -> str:
    """转义双引号字符串中的特殊字符。"""
    for char in ("\\", '"', "$", "`"):
        text = text.replace(char, "\\" + char)
    return text


def _fish_quote(text: str) -> str:
    return "'" + text.replace("\\", "\\\\").replace("'", "\\'") + "'"


class ShellDialect(ABC):
    """shell 方言抽象基类。"""

    name = "unknown"
    STARTUP_FILES: List[str] = []
    FALLBACK_FILE = ".profile"
    supports_hooks = True

    def locate_startup_file(self, home: Path) -> Path:
        """
        确定要修改的 shell 启动文件。

        按优先级返回第一个已存在的文件，都不存在时返回默认文件。

        参数:
            home: 用户主目录

        返回:
            启动文件路径
        """
        for relative in self.STARTUP_FILES:
            candidate = Path(home) / relative
            if candidate.is_file():
                return candidate
        return Path(home) / self.FALLBACK_FILE

    @abstractmethod
    def render_path_directive(self, bin_dirs: List[Path]) -> List[str]:
        """
        生成把 PHP 目录放到 PATH 最前面的配置行。

        参数:
            bin_dirs: PHP 的 bin 和 sbin 目录

        返回:
            配置行列表（不含换行符）
        """
        pass

    @abstractmethod
    def session_command(self, bin_dirs: List[Path]) -> str:
        """生成在当前会话中立即生效的命令。"""
        pass

    def render_auto_switch_hook(self) -> Optional[List[str]]:
        """
        生成目录切换时调用 phpswitch auto 的钩子。

        返回:
            配置行列表，不支持钩子时返回 None
        """
        return None

    def source_hint(self, rc_file: Path) -> str:
        """生成重新加载启动文件的命令。"""
        return f'source "{_posix_quote(str(rc_file))}"'


class PosixDialect(ShellDialect):
    """bash 和 zsh 共用的 POSIX 语法。"""

    def render_path_directive(self, bin_dirs: List[Path]) -> List[str]:
        joined = ":".join(_posix_quote(str(d)) for d in bin_dirs)
        return [
            f'export PATH="{joined}:$PATH"',
            "hash -r 2>/dev/null || true",
        ]

    def session_command(self, bin_dirs: List[Path]) -> str:
        joined = ":".join(_posix_quote(str(d)) for d in bin_dirs)
        return f'export PATH="{joined}:$PATH" && hash -r'


class BashDialect(PosixDialect):
    """bash 方言。"""

    name = "bash"
    STARTUP_FILES = [".bashrc", ".bash_profile", ".profile"]
    FALLBACK_FILE = ".bashrc"

    def render_auto_switch_hook(self) -> Optional[List[str]]:
        return [
            "phpswitch_auto_switch() {",
            '    if [ "$PWD" != "${PHPSWITCH_LAST_DIR:-}" ]; then',
            '        PHPSWITCH_LAST_DIR="$PWD"',
            "        command phpswitch auto >/dev/null 2>&1",
            "    fi",
            "}",
            'case ";${PROMPT_COMMAND:-};" in',
            '    *";phpswitch_auto_switch;"*) ;;',
            '    *) PROMPT_COMMAND="phpswitch_auto_switch${PROMPT_COMMAND:+;$PROMPT_COMMAND}" ;;',
            "esac",
        ]


class ZshDialect(PosixDialect):
    """zsh 方言。"""

    name = "zsh"
    STARTUP_FILES = [".zshrc", ".zprofile"]
    FALLBACK_FILE = ".zshrc"

    def render_auto_switch_hook(self) -> Optional[List[str]]:
        return [
            "phpswitch_auto_switch() {",
            "    command phpswitch auto >/dev/null 2>&1",
            "}",
            "autoload -U add-zsh-hook",
            "add-zsh-hook chpwd phpswitch_auto_switch",
            "phpswitch_auto_switch",
        ]


class FishDialect(ShellDialect):
    """fish 方言。"""

    name = "fish"
    STARTUP_FILES = [".config/fish/config.fish"]
    FALLBACK_FILE = ".config/fish/config.fish"

    def render_path_directive(self, bin_dirs: List[Path]) -> List[str]:
        dirs = " ".join(_fish_quote(str(d)) for d in bin_dirs)
        return [f"set -gx PATH {dirs} $PATH"]

    def session_command(self, bin_dirs: List[Path]) -> str:
        dirs = " ".join(_fish_quote(str(d)) for d in bin_dirs)
        return f"set -gx PATH {dirs} $PATH"

    def render_auto_switch_hook(self) -> Optional[List[str]]:
        return [
            "function phpswitch_auto_switch --on-variable PWD",
            "    command phpswitch auto >/dev/null 2>&1",
            "end",
        ]

    def source_hint(self, rc_file: Path) -> str:
        return f"source {_fish_quote(str(rc_file))}"


class ProfileDialect(PosixDialect):
    """无法识别的 shell，只写 ~/.profile，不支持钩子。"""

    name = "unknown"
    STARTUP_FILES = [".profile"]
    FALLBACK_FILE = ".profile"
    supports_hooks = False

    def source_hint(self, rc_file: Path) -> str:
        return f'. "{_posix_quote(str(rc_file))}"'


DIALECTS = {
    "bash": BashDialect,
    "zsh": ZshDialect,
    "fish": FishDialect,
}


def get_dialect(shell: str) -> ShellDialect:
    """
    获取 shell 对应的方言实例。

    参数:
        shell: bash、zsh、fish 或 unknown

    返回:
        方言实例，未知 shell 返回 ProfileDialect
    """
    return DIALECTS.get(shell, ProfileDialect)()

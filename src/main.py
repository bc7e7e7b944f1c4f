"""
PHPSwitch 应用程序主入口点。
"""

import sys
from pathlib import Path
from typing import Optional


def setup_import_path() -> None:
    """
    设置正确的导入路径，确保模块能正常导入。
    """
    src_dir = Path(__file__).resolve().parent
    project_root = src_dir.parent
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


setup_import_path()

from src.cli import create_parser, run_cli


def main(args: Optional[list[str]] = None) -> int:
    """
    应用程序主入口点。

    参数:
        args: 命令行参数。如果为 None，将使用 sys.argv[1:]。

    返回:
        退出码（0 表示成功，非零表示错误）。
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1
    return run_cli(parsed_args)


if __name__ == "__main__":
    sys.exit(main())

"""
PHPSwitch 命令行接口模块。
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Dict, List

from src.core.config_manager import ConfigManager, ConfigSaveError
from src.core.registry_client import RegistryError, RegistryUnavailable
from src.core.shell_sync import ShellSyncError
from src.core.service_manager import ServiceError
from src.core.project_locator import ProjectFileError
from src.core.switch_orchestrator import SwitchOrchestrator, SwitchResult, SwitchError
from src.core.version_utils import normalize_version
from src.utils.input_validator import InputValidationError
from src.utils.logger import get_logger, setup_logger, set_log_level

logger = get_logger()

LIST_WAIT_TIMEOUT = 60


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="phpswitch",
        description="PHPSwitch - Homebrew PHP 版本管理器",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  phpswitch list              列出已安装和可安装的 PHP 版本
  phpswitch switch 8.2        切换到 PHP 8.2
  phpswitch switch            按 .php-version 或默认版本切换
  phpswitch install 8.3       安装 PHP 8.3
  phpswitch project --set 8.1 为当前项目固定 PHP 8.1
  phpswitch doctor            检查 PATH 和链接状态
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="在控制台输出调试日志",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    switch_parser = subparsers.add_parser(
        "switch",
        help="切换到指定版本",
    )
    switch_parser.add_argument(
        "version",
        nargs="?",
        default=None,
        help="要切换到的版本（省略则使用项目版本文件或默认版本）",
    )
    switch_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="版本未安装时先安装",
    )

    install_parser = subparsers.add_parser(
        "install",
        help="安装指定版本",
    )
    install_parser.add_argument(
        "version",
        help="要安装的版本",
    )

    uninstall_parser = subparsers.add_parser(
        "uninstall",
        help="卸载指定版本",
    )
    uninstall_parser.add_argument(
        "version",
        help="要卸载的版本",
    )
    uninstall_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="允许卸载当前正在使用的版本",
    )

    list_parser = subparsers.add_parser(
        "list",
        help="列出已安装和可安装的版本",
    )
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="以 JSON 格式输出",
    )
    list_parser.add_argument(
        "--no-cache",
        action="store_true",
        help="忽略缓存重新搜索可用版本",
    )

    subparsers.add_parser(
        "current",
        help="显示当前生效的版本",
    )

    project_parser = subparsers.add_parser(
        "project",
        help="显示或设置当前项目的 PHP 版本",
    )
    project_parser.add_argument(
        "--set",
        "-s",
        type=str,
        default=None,
        help="在当前目录写入 .php-version",
    )

    subparsers.add_parser(
        "auto",
        help="根据项目版本文件自动切换（供 shell 钩子调用）",
    )

    subparsers.add_parser(
        "cache-clear",
        help="清除可用版本缓存",
    )

    subparsers.add_parser(
        "cache-refresh",
        help="重新搜索可用版本并更新缓存",
    )

    subparsers.add_parser(
        "doctor",
        help="诊断 PATH、链接和服务状态",
    )

    subparsers.add_parser(
        "install-auto-switch",
        help="在 shell 启动文件中安装目录切换钩子",
    )

    return parser


def run_cli(args: argparse.Namespace) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码（0 表示成功）
    """
    config_manager = ConfigManager()
    config_manager.load_config()
    setup_logger(log_dir=config_manager.get_cache_dir() / "logs", force=True)
    if args.debug:
        set_log_level(logging.DEBUG)

    if args.command is None:
        print("未指定命令。使用 --help 查看帮助信息。")
        return 1

    command_handlers = {
        "switch": handle_switch,
        "install": handle_install,
        "uninstall": handle_uninstall,
        "list": handle_list,
        "current": handle_current,
        "project": handle_project,
        "auto": handle_auto,
        "cache-clear": handle_cache_clear,
        "cache-refresh": handle_cache_refresh,
        "doctor": handle_doctor,
        "install-auto-switch": handle_install_auto_switch,
    }

    handler = command_handlers.get(args.command)
    if not handler:
        print(f"未知命令: {args.command}")
        return 1

    logger.debug(f"执行命令: {args.command}")
    return handler(args, SwitchOrchestrator.create(config_manager))


def _print_issues(title: str, issues: List[Dict[str, str]]) -> None:
    for issue in issues:
        print(f"{title} [{issue['code']}] {issue['message']}")
        if issue.get("remedy"):
            print(f"    建议: {issue['remedy']}")


def _print_error(error: Exception) -> None:
    print(f"错误: {error}")
    remedy = getattr(error, "remedy", None)
    if remedy:
        print(f"    建议: {remedy}")


def _print_switch_result(result: SwitchResult) -> None:
    if result.shell:
        if result.shell["changed"]:
            print(f"已更新 {result.shell['rc_file']} ({result.shell['shell']})")
            if result.shell["backup"]:
                print(f"备份文件: {result.shell['backup']}")
        else:
            print(f"{result.shell['rc_file']} 无需修改")
    if result.service:
        if result.service["skipped"]:
            print("已关闭自动重启 PHP-FPM，跳过服务处理")
        elif result.service["restarted"]:
            print(f"已重启 PHP-FPM 服务 {result.service['service']}")

    _print_issues("警告:", result.warnings)
    _print_issues("错误:", result.errors)

    if result.succeeded:
        print(f"已切换到 PHP {result.version}")
        if result.shell:
            print(f"在当前终端中执行以下命令使更改立即生效: {result.shell['source_hint']}")
    else:
        print(f"切换到 {result.requested_version} 失败")


def handle_switch(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 switch 命令：切换到指定版本。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    target = orchestrator.resolve_target(args.version, Path.cwd())
    if target is None:
        print("未指定版本，当前目录也没有 .php-version 文件，且未配置 DEFAULT_PHP_VERSION")
        return 1

    if target["source"] == "project":
        print(f"使用项目版本文件 {target['file']} 中的 PHP {target['version']}")
    elif target["source"] == "config":
        print(f"使用默认版本 PHP {target['version']}")

    print(f"正在切换到 PHP {target['version']}...")
    result = orchestrator.switch(target["version"], install_if_missing=args.force)
    _print_switch_result(result)
    return 0 if result.succeeded else 1


def handle_install(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 install 命令：安装指定版本。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    try:
        version = normalize_version(args.version)
    except InputValidationError as e:
        _print_error(e)
        return 1

    print(f"正在安装 PHP {version}，可能需要较长时间...")
    try:
        orchestrator.registry.install(version)
    except RegistryError as e:
        _print_error(e)
        return 1
    print(f"成功安装 PHP {version}")
    print(f"运行 phpswitch switch {version} 切换到该版本")
    return 0


def handle_uninstall(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 uninstall 命令：卸载指定版本。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    print(f"正在卸载 PHP {args.version}...")
    try:
        warnings = orchestrator.uninstall(args.version, force=args.force)
    except (SwitchError, RegistryError) as e:
        _print_error(e)
        return 1
    _print_issues("警告:", warnings)
    print(f"成功卸载 PHP {args.version}")
    return 0


def handle_list(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 list 命令：列出已安装和可安装的版本。

    可用版本在后台线程搜索，同时查询已安装版本。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    registry = orchestrator.registry
    loader = registry.start_available_search(use_cache=not args.no_cache)
    try:
        listing = registry.combined_listing(loader, timeout=LIST_WAIT_TIMEOUT)
    except RegistryUnavailable as e:
        _print_error(e)
        return 1

    if args.json:
        print(json.dumps(listing, indent=2, ensure_ascii=False))
        return 0

    print("已安装版本:")
    if not listing["installed"]:
        print("  （无）")
    for record in listing["installed"]:
        marker = " *" if record["linked"] else "  "
        print(f"{marker} {record['version']:<10} {record['formula']}")
    print(f"\n当前链接版本: {listing['linked']}")

    print("\n可安装版本:")
    if listing["available_error"]:
        print(f"  无法获取: {listing['available_error']}")
        return 0
    for entry in listing["available"]:
        status = "已安装" if entry["installed"] else ""
        print(f"   {entry['version']:<10} {entry['formula']:<12} {status}")
    if listing["stale"]:
        print(f"\n注意：网络搜索失败，显示的是 {listing['fetched_at']} 的过期缓存")
    return 0


def handle_current(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 current 命令：显示当前生效的版本。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    active = orchestrator.resolver.get_active_version()
    print(f"链接版本: {active['linked']}")
    print(f"生效版本: {active['full_version'] or active['version']}")
    print(f"可执行文件: {active['binary'] or '未找到'}")
    if active["linked"] != "none" and not active["path_consistent"]:
        print("警告：PATH 上的 php 与链接版本不一致，运行 phpswitch doctor 查看详情")
    return 0


def handle_project(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 project 命令：显示或设置当前项目的 PHP 版本。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    locator = orchestrator.locator
    if args.set:
        try:
            pin_file = locator.set_project_version(Path.cwd(), args.set)
        except (InputValidationError, ProjectFileError) as e:
            _print_error(e)
            return 1
        print(f"已写入 {pin_file}")
        return 0

    try:
        installed = orchestrator.registry.installed_versions()
    except RegistryUnavailable as e:
        logger.warning(f"无法查询已安装版本: {e}")
        installed = []
    pin = locator.find_project_version(Path.cwd(), installed)
    if not pin:
        print("当前目录及其上级目录中没有项目版本文件")
        return 0
    print(f"项目版本: {pin['version']}（{pin['file']}）")
    if installed and pin["version"] not in installed:
        print(f"PHP {pin['version']} 尚未安装，运行 phpswitch install {pin['version']} 安装")
    return 0


def handle_auto(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 auto 命令：根据项目版本文件自动切换。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    if not orchestrator.config_manager.get_auto_switch():
        logger.debug("未启用自动切换")
        return 0
    try:
        result = orchestrator.auto_switch(Path.cwd())
    except RegistryUnavailable as e:
        logger.warning(f"自动切换失败: {e}")
        return 1
    if result is None:
        return 0
    _print_switch_result(result)
    return 0 if result.succeeded else 1


def handle_cache_clear(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 cache-clear 命令：清除可用版本缓存。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    if orchestrator.registry.clear_cache():
        print("已清除可用版本缓存")
    else:
        print("没有可清除的缓存")
    return 0


def handle_cache_refresh(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 cache-refresh 命令：重新搜索可用版本。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    print("正在搜索可用的 PHP 版本...")
    try:
        available = orchestrator.registry.refresh_cache()
    except RegistryUnavailable as e:
        _print_error(e)
        return 1
    if available["stale"]:
        print("搜索失败，缓存未更新")
        return 1
    print(f"已缓存 {len(available['versions'])} 个可用版本")
    return 0


def handle_doctor(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 doctor 命令：诊断 PATH、链接和服务状态。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码，发现问题返回 1
    """
    problems = 0
    print(f"Homebrew 前缀: {orchestrator.homebrew.prefix}")

    active = orchestrator.resolver.get_active_version()
    print(f"链接版本: {active['linked']}")
    print(f"生效版本: {active['full_version'] or active['version']} ({active['binary'] or '未找到'})")
    if not active["path_consistent"]:
        problems += 1
        print("问题：PATH 上的 php 与链接版本不一致")

    binaries = orchestrator.resolver.find_path_binaries()
    print("\nPATH 上的 php:")
    for item in binaries:
        print(f"  {item['binary']}: {item['full_version'] or item['version']}")
    if len(binaries) > 1:
        print("  排在前面的 php 会覆盖后面的")

    shell_sync = orchestrator.shell_sync
    print(f"\nshell: {shell_sync.detect_shell()}")
    rc_file = shell_sync.startup_file()
    print(f"启动文件: {rc_file}")
    print(f"备份数量: {len(shell_sync.list_backups(rc_file))}")

    print("\nPHP-FPM 服务:")
    try:
        for service in orchestrator.service_manager.list_services():
            print(f"  {service['name']:<10} {service['status']}")
    except ServiceError as e:
        problems += 1
        print(f"  无法列出服务: {e}")

    config_manager = orchestrator.config_manager
    print(f"\n配置文件: {config_manager.config_file}"
          f"{'' if config_manager.config_file.exists() else '（不存在，使用默认值）'}")
    print(f"缓存文件: {orchestrator.registry.cache_file}")
    return 1 if problems else 0


def handle_install_auto_switch(args: argparse.Namespace, orchestrator: SwitchOrchestrator) -> int:
    """
    处理 install-auto-switch 命令：安装目录切换钩子。

    参数:
        args: 解析后的命令行参数
        orchestrator: 版本切换编排器

    返回:
        退出码
    """
    try:
        installed = orchestrator.shell_sync.install_auto_switch()
        orchestrator.config_manager.set_value("AUTO_SWITCH_PHP_VERSION", True)
    except (ShellSyncError, ConfigSaveError) as e:
        _print_error(e)
        return 1

    if installed["changed"]:
        print(f"已在 {installed['rc_file']} 中安装自动切换钩子")
    else:
        print(f"{installed['rc_file']} 中已有自动切换钩子")
    print(f"新开终端或执行 {installed['source_hint']} 后生效")
    return 0

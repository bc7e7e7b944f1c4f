"""
PHP 版本注册表客户端模块。

提供已安装版本查询、可用版本搜索（带磁盘缓存）以及安装和卸载功能。
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any

import requests

from src.utils.logger import get_logger
from src.core.config_manager import ConfigManager, _atomic_write_text
from src.core.homebrew import Homebrew
from src.core.interfaces import IRegistryClient
from src.core.version_utils import (
    formula_name,
    version_from_formula,
    sort_versions_desc,
    NO_VERSION,
)
from src.core.version_resolver import read_linked_version

logger = get_logger()

CACHE_FILE_NAME = "available_versions.cache"
CACHE_TTL_SECONDS = 3600
FORMULA_API_URL = "https://formulae.brew.sh/api/formula/php.json"
API_TIMEOUT = 10
REFRESH_REMEDY = "运行 phpswitch cache-refresh 重新获取版本列表"
SOURCE_STATUS_FILE_NAME = "source_status.json"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class RegistryError(Exception):
    """注册表错误异常基类。"""

    def __init__(self, message: str, remedy: Optional[str] = None):
        super().__init__(message)
        self.remedy = remedy


class RegistryUnavailable(RegistryError):
    """注册表不可用异常。"""
    pass


class RegistryTimeout(RegistryUnavailable):
    """注册表查询超时异常。"""
    pass


class InstallFailed(RegistryError):
    """安装失败异常。"""
    pass


class UninstallFailed(RegistryError):
    """卸载失败异常。"""
    pass


class SourceStatus:
    """
    搜索来源状态跟踪类。

    记录每个来源最近的成功和失败，优先使用最近成功的来源。
    指定 status_file 时状态保存在磁盘上，下次运行继续沿用。
    """

    def __init__(self, status_file: Optional[Path] = None):
        """
        初始化来源状态。

        参数:
            status_file: 状态文件路径，None 表示只保存在内存中
        """
        self.status_file = status_file
        self._status: Dict[str, Dict[str, Any]] = {}
        if status_file is not None:
            self._load()

    def _load(self) -> None:
        if not self.status_file.exists():
            return
        try:
            with open(self.status_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"读取来源状态文件失败: {e}")
            return
        if not isinstance(data, dict):
            return

        for source, status in data.items():
            if not isinstance(status, dict):
                continue
            try:
                self._status[source] = {
                    "last_success": _parse_time(status.get("last_success")),
                    "last_failure": _parse_time(status.get("last_failure")),
                    "failure_reason": status.get("failure_reason"),
                    "consecutive_failures": int(status.get("consecutive_failures") or 0),
                }
            except (TypeError, ValueError):
                logger.debug(f"忽略无效的来源状态: {source}")

    def _save(self) -> None:
        """保存状态到磁盘，写入失败只记录警告。"""
        if self.status_file is None:
            return
        data = {
            source: dict(
                status,
                last_success=status["last_success"].isoformat() if status["last_success"] else None,
                last_failure=status["last_failure"].isoformat() if status["last_failure"] else None,
            )
            for source, status in self._status.items()
        }
        try:
            self.status_file.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write_text(self.status_file, json.dumps(data, indent=2, ensure_ascii=False))
        except OSError as e:
            logger.warning(f"保存来源状态失败: {e}")

    def record_success(self, source: str) -> None:
        """
        记录来源成功。

        参数:
            source: 来源名称
        """
        self._status[source] = {
            "last_success": datetime.now(),
            "last_failure": None,
            "failure_reason": None,
            "consecutive_failures": 0
        }
        self._save()

    def record_failure(self, source: str, reason: str) -> None:
        """
        记录来源失败。

        参数:
            source: 来源名称
            reason: 失败原因
        """
        current = self._status.get(source, {
            "last_success": None,
            "last_failure": None,
            "failure_reason": None,
            "consecutive_failures": 0
        })
        current["last_failure"] = datetime.now()
        current["failure_reason"] = reason
        current["consecutive_failures"] = current.get("consecutive_failures", 0) + 1
        self._status[source] = current
        self._save()

    def get_sorted_sources(self, sources: List[str]) -> List[str]:
        """
        获取按优先级排序的来源列表。

        参数:
            sources: 原始来源列表

        返回:
            排序后的来源列表
        """
        def get_priority(source: str) -> tuple:
            status = self._status.get(source, {})
            last_success = status.get("last_success")
            consecutive_failures = status.get("consecutive_failures", 0)

            if last_success is None:
                return (1, consecutive_failures, 0)

            return (0, consecutive_failures, -last_success.timestamp())

        return sorted(sources, key=get_priority)

    def get_failure_summary(self) -> str:
        """
        获取失败摘要信息。

        返回:
            失败摘要字符串
        """
        summaries = []
        for source, status in self._status.items():
            if status.get("last_failure"):
                summaries.append(
                    f"{source}: {status.get('failure_reason', '未知错误')} "
                    f"(连续失败 {status.get('consecutive_failures', 0)} 次)"
                )
        return "; ".join(summaries) if summaries else "无失败记录"


class AvailableVersionsLoader(threading.Thread):
    """可用版本加载器（在后台线程执行）。"""

    def __init__(self, client: "RegistryClient", use_cache: bool = True):
        """
        初始化可用版本加载器。

        参数:
            client: 注册表客户端
            use_cache: 是否使用缓存
        """
        super().__init__(name="AvailableVersionsLoader", daemon=True)
        self.client = client
        self.use_cache = use_cache
        self.result: Optional[Dict[str, Any]] = None
        self.error: Optional[BaseException] = None

    def run(self):
        """在后台线程执行可用版本搜索。"""
        logger.debug("[ASYNC] AvailableVersionsLoader.run 开始执行")
        try:
            self.result = self.client.list_available(use_cache=self.use_cache)
            logger.debug(f"[ASYNC] 获取到 {len(self.result['versions'])} 个可用版本")
        except Exception as e:
            logger.debug(f"[ASYNC] 加载可用版本失败: {e}")
            self.error = e

    def join(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        等待加载完成并返回结果。

        参数:
            timeout: 最长等待时间（秒）

        返回:
            list_available 的结果

        抛出:
            RegistryTimeout: 等待超时
            加载过程中抛出的异常
        """
        super().join(timeout)
        if self.is_alive():
            raise RegistryTimeout(f"等待可用版本列表超时 ({timeout} 秒)", REFRESH_REMEDY)
        if self.error is not None:
            raise self.error
        return self.result


class RegistryClient(IRegistryClient):
    """
    PHP 版本注册表客户端。

    已安装版本每次实时查询，可用版本缓存在磁盘上。
    实现 IRegistryClient 抽象接口。
    """

    SOURCES = ["api", "brew"]

    def __init__(self, config_manager: ConfigManager, homebrew: Homebrew):
        """
        初始化注册表客户端。

        参数:
            config_manager: 配置管理器实例
            homebrew: Homebrew 封装实例
        """
        self.config_manager = config_manager
        self.homebrew = homebrew
        self.source_status = SourceStatus(config_manager.get_cache_dir() / SOURCE_STATUS_FILE_NAME)

    @property
    def cache_file(self) -> Path:
        """可用版本缓存文件路径。"""
        return self.config_manager.get_cache_dir() / CACHE_FILE_NAME

    def list_installed(self) -> List[Dict[str, Any]]:
        """
        获取已安装的 PHP 版本列表。

        返回:
            已安装版本记录列表（按版本降序）

        抛出:
            RegistryTimeout: brew 命令超时
            RegistryUnavailable: brew 命令失败
        """
        result = self.homebrew.list_formulae()
        if result.timed_out:
            raise RegistryTimeout("查询已安装版本超时", "检查 Homebrew 是否正常工作后重试")
        if not result.ok:
            raise RegistryUnavailable(result.describe(), "检查 Homebrew 是否已安装并可用")

        linked = read_linked_version(self.homebrew.prefix)
        records = []
        for line in result.stdout.splitlines():
            version = version_from_formula(line)
            if version is None:
                continue
            formula = formula_name(version)
            records.append({
                "version": version,
                "formula": formula,
                "path": str(self.homebrew.opt_dir(formula)),
                "linked": version == linked,
            })

        logger.debug(f"已安装 {len(records)} 个 PHP 版本")
        return sort_versions_desc(records)

    def installed_versions(self) -> List[str]:
        """获取已安装的版本标识列表。"""
        return [record["version"] for record in self.list_installed()]

    def list_available(self, use_cache: bool = True) -> Dict[str, Any]:
        """
        获取可安装的 PHP 版本列表。

        参数:
            use_cache: 是否优先使用未过期的缓存

        返回:
            包含 versions、stale、from_cache、fetched_at 的字典

        抛出:
            RegistryUnavailable: 搜索失败且没有任何缓存
        """
        cache = self._load_cache()
        if use_cache and cache is not None and self._is_fresh(cache):
            logger.info("使用本地缓存的可用版本信息")
            return self._from_cache(cache, stale=False)

        try:
            versions = self._search()
        except RegistryUnavailable as e:
            if cache is not None:
                logger.warning(f"搜索可用版本失败，使用过期缓存: {e}")
                return self._from_cache(cache, stale=True)
            raise RegistryUnavailable(f"无法获取可用版本列表: {e}", REFRESH_REMEDY) from e

        try:
            installed = set(self.installed_versions())
        except RegistryUnavailable as e:
            logger.warning(f"无法查询已安装版本，安装标记可能不准确: {e}")
            installed = set()
        for entry in versions:
            entry["installed"] = entry["version"] in installed

        fetched_at = datetime.now().isoformat()
        self._update_cache(versions, fetched_at)
        return {
            "versions": versions,
            "stale": False,
            "from_cache": False,
            "fetched_at": fetched_at,
        }

    def start_available_search(self, use_cache: bool = True) -> AvailableVersionsLoader:
        """
        在后台线程开始搜索可用版本。

        参数:
            use_cache: 是否使用缓存

        返回:
            已启动的 AvailableVersionsLoader
        """
        loader = AvailableVersionsLoader(self, use_cache=use_cache)
        loader.start()
        return loader

    def combined_listing(
        self,
        loader: Optional[AvailableVersionsLoader] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        合并已安装版本和可用版本。

        可用版本的 installed 标记按最新的已安装列表重新计算。

        参数:
            loader: 已启动的后台加载器，None 表示同步搜索
            timeout: 等待加载器的最长时间

        返回:
            包含 installed、linked、available 等字段的字典
        """
        installed = self.list_installed()
        linked = next((r["version"] for r in installed if r["linked"]), NO_VERSION)

        listing: Dict[str, Any] = {
            "installed": installed,
            "linked": linked,
            "available": [],
            "stale": False,
            "from_cache": False,
            "fetched_at": None,
            "available_error": None,
        }

        try:
            available = loader.join(timeout) if loader else self.list_available()
        except RegistryUnavailable as e:
            logger.warning(f"无法获取可用版本: {e}")
            listing["available_error"] = str(e)
            return listing

        installed_versions = {r["version"] for r in installed}
        listing["available"] = [
            dict(entry, installed=entry["version"] in installed_versions)
            for entry in available["versions"]
        ]
        listing["stale"] = available["stale"]
        listing["from_cache"] = available["from_cache"]
        listing["fetched_at"] = available["fetched_at"]
        return listing

    def install(self, version: str) -> None:
        """
        安装指定版本。

        参数:
            version: 版本标识

        抛出:
            InstallFailed: 安装失败或超时
        """
        formula = formula_name(version)
        logger.info(f"开始安装 {formula}")
        result = self.homebrew.install(formula)
        if not result.ok:
            logger.error(f"安装 {formula} 失败: {result.describe()}")
            raise InstallFailed(result.describe(), f"手动运行 brew install {formula} 查看详细信息")
        logger.info(f"{formula} 安装成功")

    def uninstall(self, version: str) -> None:
        """
        卸载指定版本。

        参数:
            version: 版本标识

        抛出:
            UninstallFailed: 卸载失败或超时
        """
        formula = formula_name(version)
        logger.info(f"开始卸载 {formula}")
        result = self.homebrew.uninstall(formula)
        if not result.ok:
            logger.error(f"卸载 {formula} 失败: {result.describe()}")
            raise UninstallFailed(result.describe(), f"手动运行 brew uninstall {formula} 查看详细信息")
        logger.info(f"{formula} 卸载成功")

    def clear_cache(self) -> bool:
        """
        清除可用版本缓存。

        返回:
            删除了缓存文件返回 True，缓存不存在或删除失败返回 False
        """
        if not self.cache_file.exists():
            logger.debug("缓存文件不存在，无需清除")
            return False
        try:
            self.cache_file.unlink()
        except OSError as e:
            logger.error(f"删除缓存文件失败: {e}")
            return False
        logger.info(f"已清除缓存: {self.cache_file}")
        return True

    def refresh_cache(self) -> Dict[str, Any]:
        """忽略缓存重新搜索可用版本。"""
        return self.list_available(use_cache=False)

    def _search(self) -> List[Dict[str, Any]]:
        """
        依次尝试各个来源搜索可用版本。

        返回:
            可用版本条目列表

        抛出:
            RegistryUnavailable: 所有来源均失败
        """
        for source in self.source_status.get_sorted_sources(self.SOURCES):
            try:
                logger.info(f"尝试从 {source} 获取可用 PHP 版本")
                if source == "api":
                    formulae = self._search_api()
                else:
                    formulae = self._search_brew()
            except (requests.RequestException, ValueError, RegistryUnavailable) as e:
                logger.warning(f"从 {source} 获取可用版本失败: {e}")
                self.source_status.record_failure(source, str(e))
                continue

            versions = self._build_entries(formulae)
            if not versions:
                logger.warning(f"从 {source} 获取可用版本失败: 返回空版本列表")
                self.source_status.record_failure(source, "返回空版本列表")
                continue

            self.source_status.record_success(source)
            logger.info(f"成功从 {source} 获取 {len(versions)} 个可用版本")
            return versions

        summary = self.source_status.get_failure_summary()
        logger.error(f"所有来源获取可用版本失败。失败详情: {summary}")
        raise RegistryUnavailable(summary, REFRESH_REMEDY)

    def _search_api(self) -> List[str]:
        """从 Homebrew formulae API 获取 formula 名称列表。"""
        response = requests.get(FORMULA_API_URL, timeout=API_TIMEOUT)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("API 返回格式无效")
        formulae = [data.get("name", "php")]
        formulae.extend(data.get("versioned_formulae") or [])
        return formulae

    def _search_brew(self) -> List[str]:
        """通过 brew search 获取 formula 名称列表。"""
        formulae: List[str] = []
        succeeded = False
        for pattern in ("/php@[0-9]/", "/^php$/"):
            result = self.homebrew.search(pattern)
            if result.timed_out:
                raise RegistryTimeout("brew search 超时")
            if not result.ok:
                logger.debug(result.describe())
                continue
            succeeded = True
            formulae.extend(line.strip() for line in result.stdout.splitlines())
        if not succeeded:
            raise RegistryUnavailable("brew search 执行失败")
        return formulae

    def _build_entries(self, formulae: List[str]) -> List[Dict[str, Any]]:
        seen = set()
        entries = []
        for formula in formulae:
            version = version_from_formula(str(formula))
            if version is None or version in seen:
                continue
            seen.add(version)
            entries.append({
                "version": version,
                "formula": formula_name(version),
                "installed": False,
            })
        return sort_versions_desc(entries)

    def _load_cache(self) -> Optional[Dict[str, Any]]:
        """
        读取缓存文件。

        返回:
            缓存字典，不存在或格式无效返回 None
        """
        if not self.cache_file.exists():
            return None
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (IOError, OSError, ValueError) as e:
            logger.warning(f"读取缓存文件失败: {e}")
            return None

        if not isinstance(data, dict) or not isinstance(data.get("versions"), list):
            logger.warning(f"缓存文件格式无效: {self.cache_file}")
            return None
        data["versions"] = [
            v for v in data["versions"]
            if isinstance(v, dict) and "version" in v and "formula" in v
        ]
        return data

    def _is_fresh(self, cache: Dict[str, Any]) -> bool:
        try:
            last_update = datetime.fromisoformat(cache.get("last_update", ""))
        except (TypeError, ValueError):
            return False
        age = (datetime.now() - last_update).total_seconds()
        return 0 <= age < CACHE_TTL_SECONDS

    def _from_cache(self, cache: Dict[str, Any], stale: bool) -> Dict[str, Any]:
        return {
            "versions": [dict(v, installed=bool(v.get("installed"))) for v in cache["versions"]],
            "stale": stale,
            "from_cache": True,
            "fetched_at": cache.get("last_update"),
        }

    def _update_cache(self, versions: List[Dict[str, Any]], fetched_at: str) -> None:
        """
        更新版本缓存，写入失败只记录警告。

        参数:
            versions: 可用版本条目列表
            fetched_at: 获取时间
        """
        cache_data = {
            "last_update": fetched_at,
            "versions": versions
        }
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write_text(self.cache_file, json.dumps(cache_data, indent=2, ensure_ascii=False))
        except OSError as e:
            logger.warning(f"保存缓存文件失败: {e}")
            return
        logger.debug(f"已更新缓存: {self.cache_file}")

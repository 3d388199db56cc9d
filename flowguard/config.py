"""
設定 — flowguard.yaml と環境変数からの設定読み込み

プロジェクトルートの flowguard.yaml（ruamel.yaml で読み込み）と
環境変数から実行時設定を構築する。
環境変数 > 設定ファイル > デフォルト値 の優先順位で適用される。

環境変数は ``FLOWGUARD_<KEY>`` 形式（キーの ``.`` と ``-`` は ``_`` に置換、大文字）:
  FLOWGUARD_BASE_URL             : テスト対象のベース URL
  FLOWGUARD_BROWSER              : ブラウザ（chromium / firefox / webkit / chrome / msedge）
  FLOWGUARD_HEADLESS             : ヘッドレスモード（true/false, デフォルト: true）
  FLOWGUARD_WAIT_TIMEOUT         : 待機タイムアウト秒（デフォルト: 20）
  FLOWGUARD_POLL_INTERVAL        : ポーリング間隔秒（デフォルト: 0.5）
  FLOWGUARD_ARTIFACTS_DIR        : スクリーンショット等の保存先（デフォルト: reports/screenshots）
  FLOWGUARD_REPORT_PATH          : HTML レポートの出力先（デフォルト: reports/report.html）
  FLOWGUARD_REPORT_TITLE         : レポートのタイトル
  FLOWGUARD_SCREENSHOT_ON_FAILURE: 失敗時のスクリーンショット取得（デフォルト: true）
  FLOWGUARD_LOG_LEVEL            : ログレベル（デフォルト: INFO）
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .core.errors import ConfigurationError
from .core.reporting import DEFAULT_TITLE
from .core.waits import WaitPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "flowguard.yaml"

_ENV_PREFIX = "FLOWGUARD_"

_BROWSERS = ("chromium", "firefox", "webkit", "chrome", "msedge")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")

# get_*() の default 未指定を表す番兵
_MISSING: Any = object()


# ---------------------------------------------------------------------------
# YAML パーサー（モジュール共有）
# ---------------------------------------------------------------------------

_yaml = YAML()


def _to_plain(data: object) -> object:
    """ruamel.yaml の CommentedMap/CommentedSeq を通常の dict/list に再帰変換する。"""
    if isinstance(data, dict):
        return {str(key): _to_plain(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_to_plain(item) for item in data]
    return data


def env_key(key: str) -> str:
    """設定キーに対応する環境変数名を返す（例: ``report.path`` → ``FLOWGUARD_REPORT_PATH``）。"""
    return _ENV_PREFIX + key.replace(".", "_").replace("-", "_").upper()


# ---------------------------------------------------------------------------
# ConfigReader
# ---------------------------------------------------------------------------

class ConfigReader:
    """型付きアクセサを持つ設定リーダー。

    キーは ``.`` 区切りで入れ子のマッピングを辿る。
    default を指定しないキーが見つからない場合、または値を指定の型に
    変換できない場合は ConfigurationError を送出する。
    """

    def __init__(
        self,
        data: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        source: Optional[Path] = None,
    ) -> None:
        self._data = _to_plain(dict(data or {}))
        self._environ = os.environ if environ is None else environ
        self.source = source

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        environ: Optional[Mapping[str, str]] = None,
    ) -> ConfigReader:
        """YAML ファイルから読み込む。

        Raises:
            ConfigurationError: ファイルが存在しない、または YAML として不正な場合
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"設定ファイルが見つかりません: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = _yaml.load(f)
        except YAMLError as exc:
            raise ConfigurationError(f"設定ファイルの形式が不正です: {path}: {exc}") from exc

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"設定ファイルのトップレベルはマッピングにしてください: {path}")

        logger.debug("設定ファイルを読み込みました: %s", path)
        return cls(data, environ, source=path)

    # ----- 生の値 -----

    def has(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def get(self, key: str, default: Any = _MISSING) -> Any:
        """キーの値を変換せずに返す。"""
        value = self._lookup(key)
        if value is _MISSING:
            if default is _MISSING:
                raise ConfigurationError(
                    f"必須設定 '{key}' がありません（{DEFAULT_CONFIG_FILE} または {env_key(key)}）"
                )
            return default
        return value

    def _lookup(self, key: str) -> Any:
        name = env_key(key)
        if name in self._environ:
            return self._environ[name]

        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return _MISSING
            node = node[part]
        return node

    # ----- 型付きアクセサ -----

    def get_str(self, key: str, default: Any = _MISSING) -> str:
        value = self.get(key, default)
        if value is None:
            raise ConfigurationError(f"設定 '{key}' が空です")
        return str(value)

    def get_int(self, key: str, default: Any = _MISSING) -> int:
        value = self.get(key, default)
        if isinstance(value, bool):
            raise ConfigurationError(f"設定 '{key}' は整数で指定してください: {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"設定 '{key}' は整数で指定してください: {value!r}") from exc

    def get_float(self, key: str, default: Any = _MISSING) -> float:
        value = self.get(key, default)
        if isinstance(value, bool):
            raise ConfigurationError(f"設定 '{key}' は数値で指定してください: {value!r}")
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"設定 '{key}' は数値で指定してください: {value!r}") from exc

    def get_bool(self, key: str, default: Any = _MISSING) -> bool:
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigurationError(f"設定 '{key}' は true/false で指定してください: {value!r}")

    def get_path(self, key: str, default: Any = _MISSING) -> Path:
        return Path(self.get_str(key, default))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass
class Settings:
    """flowguard の実行時設定。

    Attributes:
        base_url: テスト対象のベース URL
        browser: 使用するブラウザ
        headless: ヘッドレスモード
        wait_timeout: 待機タイムアウト（秒）
        poll_interval: ポーリング間隔（秒）
        artifacts_dir: スクリーンショット・テキスト添付の保存先
        report_path: HTML レポートの出力先（JSON は拡張子違いで同じ場所）
        report_title: レポートのタイトル
        screenshot_on_failure: 失敗時にスクリーンショットを取得するか
        log_level: ログレベル
        source: 読み込んだ設定ファイル（なければ None）
    """

    base_url: str = ""
    browser: str = "chromium"
    headless: bool = True
    wait_timeout: float = 20.0
    poll_interval: float = 0.5
    artifacts_dir: Path = Path("reports/screenshots")
    report_path: Path = Path("reports/report.html")
    report_title: str = DEFAULT_TITLE
    screenshot_on_failure: bool = True
    log_level: str = "INFO"
    source: Optional[Path] = field(default=None, compare=False)

    def wait_policy(self) -> WaitPolicy:
        """待機設定から WaitPolicy を構築する。

        Raises:
            ConfigurationError: タイムアウト・ポーリング間隔の組み合わせが不正な場合
        """
        try:
            return WaitPolicy(timeout=self.wait_timeout, poll_interval=self.poll_interval)
        except ValueError as exc:
            raise ConfigurationError(f"待機設定が不正です: {exc}") from exc

    def as_dict(self) -> dict[str, Any]:
        return {
            "base_url": self.base_url,
            "browser": self.browser,
            "headless": self.headless,
            "wait_timeout": self.wait_timeout,
            "poll_interval": self.poll_interval,
            "artifacts_dir": self.artifacts_dir.as_posix(),
            "report_path": self.report_path.as_posix(),
            "report_title": self.report_title,
            "screenshot_on_failure": self.screenshot_on_failure,
            "log_level": self.log_level,
        }


def load_settings(
    path: Optional[Union[str, Path]] = None,
    required: Iterable[str] = (),
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """設定ファイルと環境変数から Settings を構築し、検証する。

    path を省略した場合はカレントディレクトリの flowguard.yaml を読み込み、
    存在しなければ環境変数とデフォルト値のみを使用する。

    Args:
        path: 設定ファイルのパス
        required: 必ず指定されていなければならないキー
        environ: 環境変数（テスト用に差し替え可能）

    Returns:
        検証済みの設定

    Raises:
        ConfigurationError: 必須設定の欠落・不正値・ファイルの読み込み失敗
    """
    if path is not None:
        reader = ConfigReader.from_file(path, environ)
    elif Path(DEFAULT_CONFIG_FILE).exists():
        reader = ConfigReader.from_file(DEFAULT_CONFIG_FILE, environ)
    else:
        reader = ConfigReader(environ=environ)

    for key in required:
        reader.get(key)

    defaults = Settings()
    settings = Settings(
        base_url=reader.get_str("base_url", defaults.base_url),
        browser=reader.get_str("browser", defaults.browser).lower(),
        headless=reader.get_bool("headless", defaults.headless),
        wait_timeout=reader.get_float("wait_timeout", defaults.wait_timeout),
        poll_interval=reader.get_float("poll_interval", defaults.poll_interval),
        artifacts_dir=reader.get_path("artifacts_dir", defaults.artifacts_dir),
        report_path=reader.get_path("report_path", defaults.report_path),
        report_title=reader.get_str("report_title", defaults.report_title),
        screenshot_on_failure=reader.get_bool(
            "screenshot_on_failure", defaults.screenshot_on_failure,
        ),
        log_level=reader.get_str("log_level", defaults.log_level).upper(),
        source=reader.source,
    )

    if settings.browser not in _BROWSERS:
        raise ConfigurationError(
            f"設定 'browser' が不正です: {settings.browser}（{' / '.join(_BROWSERS)}）"
        )
    if settings.log_level not in _LOG_LEVELS:
        raise ConfigurationError(f"設定 'log_level' が不正です: {settings.log_level}")
    settings.wait_policy()

    logger.info("設定を読み込みました: %s", settings.as_dict())
    return settings


def render_template(base_url: str = "http://localhost:3000") -> str:
    """flowguard init が生成する設定ファイルの内容を返す。"""
    return (
        "# flowguard プロジェクト設定\n"
        "# 各キーは環境変数 FLOWGUARD_<KEY> で上書きできます\n"
        f"base_url: {base_url}\n"
        "browser: chromium\n"
        "headless: true\n"
        "wait_timeout: 20\n"
        "poll_interval: 0.5\n"
        "artifacts_dir: reports/screenshots\n"
        "report_path: reports/report.html\n"
        f"report_title: {DEFAULT_TITLE}\n"
        "screenshot_on_failure: true\n"
        "log_level: INFO\n"
    )

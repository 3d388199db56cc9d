"""
pytest プラグイン — pytest のフックから ExecutionListener を駆動する

``-p flowguard.pytest_plugin`` または conftest.py の
``pytest_plugins = ["flowguard.pytest_plugin"]`` で有効化する。
``--flowguard-report`` / ``--flowguard-config``（または ini の ``flowguard_report``）が
指定された場合のみレポートを記録する。

状態（リスナーと設定）は pytest の Config（stash）に保持する。
設定ファイルの wait_timeout / poll_interval はセッション中のデフォルト待機ポリシーとなり、
終了時に元のポリシーへ戻す。

失敗時のスクリーンショットは、テストクラスのインスタンスまたはフィクスチャ値のうち
get_driver() を持つもの（または UiDriver そのもの）から取得する。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import pytest

from .config import Settings, load_settings
from .core.errors import ConfigurationError
from .core.listener import ExecutionListener
from .core.reporting import ReportingPipeline
from .core.waits import WaitPolicy, get_default_policy, set_default_policy

logger = logging.getLogger(__name__)

_listener_key = pytest.StashKey[ExecutionListener]()
_settings_key = pytest.StashKey[Settings]()
_report_path_key = pytest.StashKey[Optional[Path]]()
_previous_policy_key = pytest.StashKey[WaitPolicy]()


# ---------------------------------------------------------------------------
# オプション
# ---------------------------------------------------------------------------

def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("flowguard", "flowguard テストレポート")
    group.addoption(
        "--flowguard-report",
        dest="flowguard_report",
        default=None,
        metavar="PATH",
        help="統合 HTML レポートの出力先（JSON は拡張子 .json で同じ場所）",
    )
    group.addoption(
        "--flowguard-config",
        dest="flowguard_config",
        default=None,
        metavar="FILE",
        help="flowguard.yaml のパス",
    )
    parser.addini(
        "flowguard_report",
        help="統合 HTML レポートの出力先（--flowguard-report と同じ）",
        default="",
    )


def pytest_configure(config: pytest.Config) -> None:
    report = config.getoption("flowguard_report") or config.getini("flowguard_report")
    config_file = config.getoption("flowguard_config")
    if not report and not config_file:
        return

    try:
        settings = load_settings(config_file)
        policy = settings.wait_policy()
    except ConfigurationError as exc:
        raise pytest.UsageError(f"flowguard: {exc}") from exc
    if report:
        settings.report_path = Path(report)

    config.stash[_settings_key] = settings
    config.stash[_listener_key] = ExecutionListener(ReportingPipeline.from_settings(settings))

    config.stash[_previous_policy_key] = get_default_policy()
    set_default_policy(policy)


def pytest_unconfigure(config: pytest.Config) -> None:
    previous = config.stash.get(_previous_policy_key, None)
    if previous is not None:
        set_default_policy(previous)


def _listener(config: pytest.Config) -> Optional[ExecutionListener]:
    return config.stash.get(_listener_key, None)


# ---------------------------------------------------------------------------
# セッション
# ---------------------------------------------------------------------------

def pytest_sessionstart(session: pytest.Session) -> None:
    listener = _listener(session.config)
    if listener is not None:
        listener.on_suite_start(session.name)


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    listener = _listener(session.config)
    if listener is not None:
        session.config.stash[_report_path_key] = listener.on_suite_end(session.name)


def pytest_terminal_summary(terminalreporter: Any, exitstatus: int, config: pytest.Config) -> None:
    path = config.stash.get(_report_path_key, None)
    if path is not None:
        terminalreporter.write_line(f"flowguard レポート: {path}")


# ---------------------------------------------------------------------------
# テスト
# ---------------------------------------------------------------------------

def _description(item: pytest.Item) -> Optional[str]:
    """テスト関数の docstring の 1 行目を説明として返す。"""
    function = getattr(item, "function", None)
    doc = getattr(function, "__doc__", None)
    if not doc:
        return None
    return doc.strip().splitlines()[0]


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_protocol(item: pytest.Item, nextitem: Optional[pytest.Item]):
    listener = _listener(item.config)
    if listener is not None:
        listener.on_test_start(item.nodeid, _description(item))
    yield
    if listener is not None:
        listener.on_test_finished(item.nodeid)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo):
    outcome = yield
    listener = _listener(item.config)
    if listener is None:
        return
    report = outcome.get_result()

    if report.failed:
        error: Any = call.excinfo.value if call.excinfo is not None else report.longreprtext
        candidates = list(getattr(item, "funcargs", {}).values())
        listener.on_test_failure(item.nodeid, error, getattr(item, "instance", None), *candidates)
    elif report.skipped:
        reason = None
        if isinstance(report.longrepr, tuple):
            reason = report.longrepr[2]
        listener.on_test_skipped(item.nodeid, reason)
    elif report.when == "call":
        listener.on_test_success(item.nodeid)


# ---------------------------------------------------------------------------
# フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture
def flowguard_pipeline(request: pytest.FixtureRequest) -> Optional[ReportingPipeline]:
    """有効化されている場合は ReportingPipeline を返す（無効なら None）。"""
    listener = _listener(request.config)
    return None if listener is None else listener.pipeline


@pytest.fixture
def flowguard_settings(request: pytest.FixtureRequest) -> Settings:
    """読み込み済みの Settings を返す（無効な場合はデフォルト設定）。"""
    return request.config.stash.get(_settings_key, None) or Settings()

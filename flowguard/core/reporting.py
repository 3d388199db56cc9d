"""
ReportingPipeline — スレッド単位のテスト結果記録とレポート出力

テストごとのレポートノードに PASS / FAIL / INFO / WARN / SKIP イベントを
記録し、実行終了時に 1 つの統合レポート（HTML + JSON）として書き出す。

主な機能:
  - ReportEvent / ReportNode: イベントとテスト単位のノード
  - ReportSink: UNINITIALIZED → ACTIVE → FLUSHED のライフサイクルを持つ出力先
  - ReportingPipeline: 呼び出し元スレッドのノードへのイベント記録
  - render_html(): Jinja2 テンプレート（templates/report.html.j2）による HTML 生成

ノード生成とフラッシュはシンクのロックで直列化する。ノードへの追記は
所有スレッドのみが行うため、ロックを取らない。
"""

from __future__ import annotations

import json
import logging
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Sequence, Union

from jinja2 import Environment, FileSystemLoader

from .artifacts import Artifact, ArtifactCapture
from .context import TestContext, TestContextRegistry
from .driver import UiDriver
from .errors import CaptureFailure, ReportSinkClosedError

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

# テンプレートディレクトリのパス
_TEMPLATES_DIR = Path(__file__).parent.parent / "templates"

DEFAULT_TITLE = "flowguard テストレポート"


# ---------------------------------------------------------------------------
# イベントとノード
# ---------------------------------------------------------------------------

class EventKind(str, Enum):
    """イベント種別。"""

    PASS = "PASS"
    FAIL = "FAIL"
    INFO = "INFO"
    WARN = "WARN"
    SKIP = "SKIP"


# ノードの状態はイベントのうち最も優先度の高い種別で決まる
_STATUS_PRIORITY = {
    EventKind.INFO: 0,
    EventKind.PASS: 1,
    EventKind.WARN: 2,
    EventKind.SKIP: 3,
    EventKind.FAIL: 4,
}


@dataclass(frozen=True)
class ReportEvent:
    """記録済みのイベント。記録後は変更されない。

    Attributes:
        event_id: ノード内で一意なイベント ID
        kind: イベント種別
        message: メッセージ
        timestamp: 記録日時
        detail: 例外のスタックトレース等の詳細
        artifacts: 添付アーティファクト
    """

    event_id: str
    kind: EventKind
    message: str
    timestamp: datetime
    detail: Optional[str] = None
    artifacts: tuple[Artifact, ...] = ()

    def to_dict(self, base_dir: Optional[Path] = None) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "kind": self.kind.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "detail": self.detail,
            "artifacts": [
                {
                    "kind": a.kind,
                    "path": _to_relative_path(a.path, base_dir),
                    "event_id": a.event_id,
                }
                for a in self.artifacts
            ],
        }


class ReportNode:
    """1 テスト分のイベントを保持するノード。

    イベントの順序は記録順と一致する。追記は所有スレッドのみが行う。
    """

    def __init__(
        self,
        sink: ReportSink,
        node_id: str,
        name: str,
        description: Optional[str] = None,
    ) -> None:
        self._sink = sink
        self.node_id = node_id
        self.name = name
        self.description = description
        self.thread_id = threading.get_ident()
        self.started_at = datetime.now()
        self._events: list[ReportEvent] = []

    @property
    def events(self) -> tuple[ReportEvent, ...]:
        return tuple(self._events)

    @property
    def status(self) -> EventKind:
        """ノードの状態（FAIL > SKIP > WARN > PASS > INFO）。"""
        if not self._events:
            return EventKind.INFO
        return max((e.kind for e in self._events), key=_STATUS_PRIORITY.__getitem__)

    def append(
        self,
        kind: EventKind,
        message: str,
        detail: Optional[str] = None,
        artifacts: Sequence[tuple[str, Path]] = (),
    ) -> ReportEvent:
        """イベントを追記する。

        Args:
            kind: イベント種別
            message: メッセージ
            detail: 詳細テキスト
            artifacts: (種別, パス) の組。イベント ID はここで付与される

        Raises:
            ReportSinkClosedError: シンクがフラッシュ済みの場合
        """
        if self._sink.state is SinkState.FLUSHED:
            raise ReportSinkClosedError(
                f"フラッシュ済みのレポートには記録できません: [{kind.value}] {message}"
            )
        event_id = f"{self.node_id}-{len(self._events) + 1:03d}"
        event = ReportEvent(
            event_id=event_id,
            kind=kind,
            message=message,
            timestamp=datetime.now(),
            detail=detail,
            artifacts=tuple(Artifact(k, Path(p), event_id) for k, p in artifacts),
        )
        self._events.append(event)
        return event

    def to_dict(self, base_dir: Optional[Path] = None) -> dict[str, Any]:
        return {
            "id": self.node_id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "thread_id": self.thread_id,
            "started_at": self.started_at.isoformat(),
            "events": [e.to_dict(base_dir) for e in self.events],
        }


# ---------------------------------------------------------------------------
# レポートシンク
# ---------------------------------------------------------------------------

class SinkState(Enum):
    """レポートシンクのライフサイクル。"""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    FLUSHED = "flushed"


class ReportSink:
    """ノードを集約し、統合レポートとして書き出す出力先。

    生成時点で ACTIVE となり、flush() の成功で FLUSHED に遷移する。
    FLUSHED 以降のノード生成・イベント追記は拒否される。
    """

    def __init__(
        self,
        report_path: Path,
        title: str = DEFAULT_TITLE,
        system_info: Optional[dict[str, Any]] = None,
    ) -> None:
        self.report_path = Path(report_path)
        self.title = title
        self.system_info = dict(system_info or {})
        self.created_at = datetime.now()
        self._lock = threading.Lock()
        self._nodes: list[ReportNode] = []
        self._state = SinkState.ACTIVE

    @property
    def state(self) -> SinkState:
        return self._state

    @property
    def json_path(self) -> Path:
        """HTML レポートと対になる JSON レポートのパス。"""
        return self.report_path.with_suffix(".json")

    @property
    def nodes(self) -> tuple[ReportNode, ...]:
        with self._lock:
            return tuple(self._nodes)

    def create_node(self, name: str, description: Optional[str] = None) -> ReportNode:
        """テスト用のノードを生成する。

        Raises:
            ReportSinkClosedError: フラッシュ済みの場合
        """
        with self._lock:
            if self._state is SinkState.FLUSHED:
                raise ReportSinkClosedError(
                    f"フラッシュ済みのレポートにテストを追加できません: {name}"
                )
            node = ReportNode(self, f"t{len(self._nodes) + 1:04d}", name, description)
            self._nodes.append(node)
        return node

    def to_dict(self) -> dict[str, Any]:
        """レポート用辞書に変換する。"""
        with self._lock:
            return self._build_report()

    def _build_report(self) -> dict[str, Any]:
        # 呼び出し元で self._lock を保持していること
        base_dir = self.report_path.parent
        tests = [node.to_dict(base_dir) for node in self._nodes]
        return {
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "generated_at": datetime.now().isoformat(),
            "system_info": self.system_info,
            "summary": compute_summary(tests),
            "tests": tests,
        }

    def flush(self) -> Path:
        """統合レポートを書き出す。2 回目以降は書き込まずに同じパスを返す。

        Returns:
            HTML レポートのパス

        Raises:
            CaptureFailure: 書き込みに失敗した場合（状態は ACTIVE のまま）
        """
        with self._lock:
            if self._state is SinkState.FLUSHED:
                logger.debug("レポートはフラッシュ済みです: %s", self.report_path)
                return self.report_path

            report = self._build_report()
            try:
                self.report_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.json_path, "w", encoding="utf-8") as f:
                    json.dump(report, f, ensure_ascii=False, indent=2)
                render_html(report, self.report_path)
            except OSError as exc:
                raise CaptureFailure(f"レポートの書き込みに失敗しました: {exc}") from exc

            self._state = SinkState.FLUSHED

        logger.info("JSON レポートを生成しました: %s", self.json_path)
        logger.info("HTML レポートを生成しました: %s", self.report_path)
        return self.report_path


# ---------------------------------------------------------------------------
# ReportingPipeline 本体
# ---------------------------------------------------------------------------

class ReportingPipeline:
    """呼び出し元スレッドの実行中テストへイベントを記録するパイプライン。

    シンクは最初に必要になった時点で 1 つだけ生成される。
    実行中テストの対応は TestContextRegistry で管理する。

    使用例::

        pipeline = ReportingPipeline(Path("reports/report.html"))
        pipeline.start_test("test_login", "正しい認証情報でログインできる")
        pipeline.log_pass("ログインしました")
        pipeline.flush()
    """

    def __init__(
        self,
        report_path: Path = Path("reports/report.html"),
        artifact_capture: Optional[ArtifactCapture] = None,
        registry: Optional[TestContextRegistry] = None,
        title: str = DEFAULT_TITLE,
        system_info: Optional[dict[str, Any]] = None,
        screenshot_on_failure: bool = True,
    ) -> None:
        self.report_path = Path(report_path)
        self.artifacts = artifact_capture or ArtifactCapture(self.report_path.parent / "screenshots")
        self.registry = registry or TestContextRegistry()
        self.title = title
        self.system_info = dict(system_info or {})
        self.screenshot_on_failure = screenshot_on_failure
        self._lock = threading.Lock()
        self._sink: Optional[ReportSink] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ReportingPipeline:
        """Settings からパイプラインを構築する。"""
        return cls(
            report_path=settings.report_path,
            artifact_capture=ArtifactCapture(settings.artifacts_dir),
            title=settings.report_title,
            system_info={
                "base_url": settings.base_url,
                "browser": settings.browser,
                "headless": settings.headless,
            },
            screenshot_on_failure=settings.screenshot_on_failure,
        )

    # ----- シンク -----

    def get_instance(self) -> ReportSink:
        """シンクを返す。初回呼び出し時にのみ生成する。"""
        sink = self._sink
        if sink is not None:
            return sink
        with self._lock:
            if self._sink is None:
                self._sink = ReportSink(self.report_path, self.title, self.system_info)
                logger.debug("レポートシンクを生成しました: %s", self.report_path)
            return self._sink

    @property
    def state(self) -> SinkState:
        sink = self._sink
        return SinkState.UNINITIALIZED if sink is None else sink.state

    # ----- テストの開始 -----

    def start_test(self, name: str, description: Optional[str] = None) -> ReportNode:
        """ノードを生成し、呼び出し元スレッドの実行中テストとして登録する。

        Raises:
            ReportSinkClosedError: レポートがフラッシュ済みの場合
        """
        node = self.get_instance().create_node(name, description)
        self.registry.start(name, description, node)
        logger.debug("テストを開始しました: %s", name)
        return node

    def end_test(self) -> Optional[TestContext]:
        """呼び出し元スレッドの実行中テストの登録を解除する。

        ノードとイベントはレポートに残る。解除後の記録はノードなしとして扱われる。
        """
        context = self.registry.clear()
        if context is not None:
            logger.debug("テストを終了しました: %s", context.name)
        return context

    def current_node(self) -> Optional[ReportNode]:
        context = self.registry.current()
        return None if context is None else context.node

    # ----- イベントの記録 -----

    def log_pass(self, message: str) -> Optional[ReportEvent]:
        return self._emit(EventKind.PASS, message)

    def log_info(self, message: str) -> Optional[ReportEvent]:
        return self._emit(EventKind.INFO, message)

    def log_warn(self, message: str) -> Optional[ReportEvent]:
        return self._emit(EventKind.WARN, message)

    def log_skip(self, message: str) -> Optional[ReportEvent]:
        return self._emit(EventKind.SKIP, message)

    def log_fail(
        self,
        error: Union[str, BaseException],
        driver: Optional[UiDriver] = None,
    ) -> Optional[ReportEvent]:
        """FAIL イベントを記録する。

        例外が渡された場合は型・メッセージ・スタックトレース・原因の連鎖を
        詳細として記録し、テキスト添付としても保存する。ドライバが渡された場合は
        スクリーンショットを同期的に取得し、取得できた場合のみ添付する。

        Args:
            error: メッセージまたは例外
            driver: スクリーンショット取得元のドライバ
        """
        node = self._require_node(EventKind.FAIL, str(error))
        if node is None:
            return None

        artifacts: list[tuple[str, Path]] = []
        detail: Optional[str] = None
        if isinstance(error, BaseException):
            message = f"{type(error).__name__}: {error}"
            detail = format_error(error)
            trace_path = self.artifacts.save_text(f"{node.name}_trace", detail)
            if trace_path is not None:
                artifacts.append(("text", trace_path))
        else:
            message = str(error)

        if driver is not None and self.screenshot_on_failure:
            shot = self.artifacts.capture_screenshot(driver, node.name)
            if shot is not None:
                artifacts.append(("image", shot))

        return self._append(node, EventKind.FAIL, message, detail, artifacts)

    def log_step_with_screenshot(
        self, message: str, driver: Optional[UiDriver],
    ) -> Optional[ReportEvent]:
        """スクリーンショット付きの INFO イベントを記録する。"""
        node = self._require_node(EventKind.INFO, message)
        if node is None:
            return None
        shot = self.artifacts.capture_screenshot(driver, node.name)
        if shot is None:
            return self._append(
                node, EventKind.INFO, f"{message}（スクリーンショットを取得できませんでした）",
            )
        return self._append(node, EventKind.INFO, message, artifacts=[("image", shot)])

    def attach_text(self, label: str, text: str) -> Optional[Path]:
        """テキストを保存し、実行中テストがあれば INFO イベントとして添付する。"""
        path = self.artifacts.save_text(label, text)
        node = self.current_node()
        if node is None:
            if path is not None:
                logger.warning("実行中のテストがないため添付をレポートに紐付けません: %s", path)
            return path
        artifacts = [("text", path)] if path is not None else []
        self._append(node, EventKind.INFO, f"添付: {label}", artifacts=artifacts)
        return path

    # ----- フラッシュ -----

    def flush(self) -> Optional[Path]:
        """統合レポートを書き出す。何度呼んでも 1 回だけ書き込む。

        書き込みに失敗した場合はログに記録して None を返す。
        """
        try:
            return self.get_instance().flush()
        except CaptureFailure as exc:
            logger.error("%s", exc)
            return None

    # ----- 内部ヘルパー -----

    def _require_node(self, kind: EventKind, message: str) -> Optional[ReportNode]:
        node = self.current_node()
        if node is None:
            logger.warning(
                "実行中のテストがないためイベントを破棄しました: [%s] %s", kind.value, message,
            )
        return node

    def _emit(self, kind: EventKind, message: str) -> Optional[ReportEvent]:
        node = self._require_node(kind, message)
        if node is None:
            return None
        return self._append(node, kind, message)

    def _append(
        self,
        node: ReportNode,
        kind: EventKind,
        message: str,
        detail: Optional[str] = None,
        artifacts: Sequence[tuple[str, Path]] = (),
    ) -> Optional[ReportEvent]:
        try:
            return node.append(kind, message, detail, artifacts)
        except ReportSinkClosedError as exc:
            logger.warning("%s", exc)
            return None


# ---------------------------------------------------------------------------
# ヘルパー関数
# ---------------------------------------------------------------------------

def format_error(error: BaseException) -> str:
    """例外を型・メッセージ・スタックトレース・原因の連鎖を含む文字列に変換する。"""
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def compute_summary(tests: Sequence[dict[str, Any]]) -> dict[str, int]:
    """テスト辞書のリストからサマリーを計算する。

    Returns:
        total, passed, failed, skipped, warned の辞書
    """
    return {
        "total": len(tests),
        "passed": sum(1 for t in tests if t["status"] == EventKind.PASS.value),
        "failed": sum(1 for t in tests if t["status"] == EventKind.FAIL.value),
        "skipped": sum(1 for t in tests if t["status"] == EventKind.SKIP.value),
        "warned": sum(1 for t in tests if t["status"] == EventKind.WARN.value),
    }


def render_html(report: dict[str, Any], output_path: Path) -> Path:
    """レポート辞書から HTML レポートを生成する。

    Jinja2 テンプレート（templates/report.html.j2）を使用して
    スタンドアロン HTML を出力する。

    Args:
        report: ReportSink.to_dict() 形式のレポート辞書
        output_path: 出力先パス

    Returns:
        生成された HTML のパス
    """
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=True,
    )
    template = env.get_template("report.html.j2")
    html_content = template.render(report=report)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(html_content)
    return output_path


def _to_relative_path(path: Path, base_dir: Optional[Path]) -> str:
    """アーティファクトのパスを base_dir からの相対パスに変換する。"""
    if base_dir is not None:
        try:
            # OS に依存しない POSIX パス形式で返す
            return path.relative_to(base_dir).as_posix()
        except ValueError:
            # base_dir 配下でない場合はそのまま POSIX 形式で返す
            pass
    return path.as_posix()

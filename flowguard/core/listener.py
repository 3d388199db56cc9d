"""
ExecutionListener — テストランナーのライフサイクルとレポートの接続

テストランナー（pytest プラグイン等）から呼ばれるコールバックを
ReportingPipeline の操作に変換する。コールバックは決して例外を
ランナー側へ送出せず、内部エラーはログとテキスト添付に格下げする。

失敗時のスクリーンショット取得に使うドライバは、テストインスタンスや
フィクスチャ値が HasDriverHandle（get_driver()）を実装していれば取得する。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, TypeVar, Union, runtime_checkable

from .driver import UiDriver
from .reporting import ReportingPipeline, format_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class HasDriverHandle(Protocol):
    """ドライバを提供できるオブジェクト（テストクラス・ページオブジェクト等）。"""

    def get_driver(self) -> Optional[UiDriver]: ...


def resolve_driver(*candidates: Any) -> Optional[UiDriver]:
    """候補オブジェクトを順に調べ、最初に見つかったドライバを返す。

    HasDriverHandle を実装する候補は get_driver() の結果を、
    UiDriver そのものである候補はそれ自身を採用する。
    見つからない場合は None（スクリーンショットなし）を返す。
    """
    for candidate in candidates:
        if candidate is None:
            continue
        if isinstance(candidate, HasDriverHandle):
            try:
                driver = candidate.get_driver()
            except Exception as exc:
                logger.warning("get_driver() の呼び出しに失敗しました: %r (%s)", candidate, exc)
                continue
            if driver is not None:
                return driver
        elif isinstance(candidate, UiDriver):
            return candidate
    return None


class ExecutionListener:
    """テストライフサイクルのコールバックを受け取りレポートへ記録する。"""

    def __init__(self, pipeline: ReportingPipeline) -> None:
        self.pipeline = pipeline

    # ----- スイート -----

    def on_suite_start(self, name: Optional[str] = None) -> None:
        """レポートシンクを生成しておく。"""
        self._guard("on_suite_start", self.pipeline.get_instance)
        logger.info("テストスイートを開始しました: %s", name or "")

    def on_suite_end(self, name: Optional[str] = None) -> Optional[Path]:
        """統合レポートを書き出す。"""
        path = self._guard("on_suite_end", self.pipeline.flush)
        logger.info("テストスイートを終了しました: %s", name or "")
        return path

    # ----- テスト -----

    def on_test_start(self, name: str, description: Optional[str] = None) -> None:
        self._guard("on_test_start", lambda: self.pipeline.start_test(name, description))

    def on_test_success(self, name: str) -> None:
        self._guard("on_test_success", lambda: self.pipeline.log_pass(f"{name} が成功しました"))

    def on_test_failure(
        self,
        name: str,
        error: Union[str, BaseException],
        instance: Any = None,
        *candidates: Any,
    ) -> None:
        """失敗を記録する。ドライバが見つかればスクリーンショットを添付する。

        Args:
            name: テスト名
            error: 失敗の原因となった例外またはメッセージ
            instance: テストインスタンス（HasDriverHandle を実装していればドライバを取得）
            candidates: ドライバを探す追加の候補（フィクスチャ値等）
        """

        def _record() -> None:
            driver = resolve_driver(instance, *candidates)
            if driver is None:
                logger.debug("ドライバが見つからないためスクリーンショットなしで記録します: %s", name)
            self.pipeline.log_fail(error, driver)

        self._guard("on_test_failure", _record)

    def on_test_skipped(self, name: str, reason: Optional[str] = None) -> None:
        message = f"{name} はスキップされました"
        if reason:
            message += f": {reason}"
        self._guard("on_test_skipped", lambda: self.pipeline.log_skip(message))

    def on_test_finished(self, name: str) -> None:
        """テストの結果記録後に呼び、実行中テストの登録を解除する。"""
        self._guard("on_test_finished", self.pipeline.end_test)
        logger.debug("テストの後処理を行いました: %s", name)

    # ----- 内部ヘルパー -----

    def _guard(self, callback: str, action: Callable[[], T]) -> Optional[T]:
        """action を実行し、内部エラーをログとテキスト添付に格下げする。"""
        try:
            return action()
        except Exception as exc:
            logger.exception("%s の処理中にエラーが発生しました", callback)
            try:
                self.pipeline.attach_text(f"listener_{callback}", format_error(exc))
            except Exception:
                logger.exception("%s の診断情報を添付できませんでした", callback)
            return None

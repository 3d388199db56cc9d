"""
ExecutionListener のユニットテスト

テスト対象:
  - resolve_driver: HasDriverHandle / UiDriver 候補からのドライバ解決
  - ライフサイクルコールバックとレポート記録
  - 内部エラーの格下げ（コールバックは例外を送出しない）
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import pytest

from conftest import FakeDriver
from flowguard.core.artifacts import ArtifactCapture
from flowguard.core.listener import ExecutionListener, HasDriverHandle, resolve_driver
from flowguard.core.reporting import EventKind, ReportingPipeline, SinkState


class PageTest:
    """get_driver() を持つテストクラスの代役。"""

    def __init__(self, driver: Optional[FakeDriver]) -> None:
        self._driver = driver

    def get_driver(self) -> Optional[FakeDriver]:
        return self._driver


class BrokenHandle:
    def get_driver(self) -> FakeDriver:
        raise RuntimeError("session closed")


@pytest.fixture
def pipeline(tmp_path: Path) -> ReportingPipeline:
    return ReportingPipeline(
        report_path=tmp_path / "report.html",
        artifact_capture=ArtifactCapture(tmp_path / "screenshots"),
    )


@pytest.fixture
def listener(pipeline: ReportingPipeline) -> ExecutionListener:
    return ExecutionListener(pipeline)


class TestResolveDriver:
    """ドライバの解決。"""

    def test_from_handle(self, fake_driver: FakeDriver) -> None:
        assert isinstance(PageTest(fake_driver), HasDriverHandle)
        assert resolve_driver(PageTest(fake_driver)) is fake_driver

    def test_no_capability(self) -> None:
        """能力を持たない候補しかない場合は None を返すこと。"""
        assert resolve_driver(None, object(), "text") is None

    def test_skips_empty_and_broken_handles(self, fake_driver: FakeDriver) -> None:
        """get_driver() が None や例外の候補は飛ばして次の候補を調べること。"""
        assert resolve_driver(PageTest(None), BrokenHandle(), fake_driver) is fake_driver

    def test_driver_itself(self, fake_driver: FakeDriver) -> None:
        assert resolve_driver(fake_driver) is fake_driver


class TestLifecycle:
    """コールバックとレポートの対応。"""

    def test_full_run(self, listener: ExecutionListener, pipeline: ReportingPipeline, fake_driver: FakeDriver) -> None:
        listener.on_suite_start("account")
        assert pipeline.state is SinkState.ACTIVE

        listener.on_test_start("test_login", "ログイン")
        listener.on_test_success("test_login")

        listener.on_test_start("test_register")
        listener.on_test_failure("test_register", AssertionError("not created"), PageTest(fake_driver))

        listener.on_test_start("test_newsletter")
        listener.on_test_skipped("test_newsletter", "未実装")

        path = listener.on_suite_end("account")
        assert path is not None
        assert pipeline.state is SinkState.FLUSHED

        data = json.loads(path.with_suffix(".json").read_text(encoding="utf-8"))
        statuses = {t["name"]: t["status"] for t in data["tests"]}
        assert statuses == {
            "test_login": "PASS",
            "test_register": "FAIL",
            "test_newsletter": "SKIP",
        }
        failure = data["tests"][1]["events"][0]
        assert sorted(a["kind"] for a in failure["artifacts"]) == ["image", "text"]
        assert "未実装" in data["tests"][2]["events"][0]["message"]

    def test_failure_without_driver(self, listener: ExecutionListener, pipeline: ReportingPipeline) -> None:
        """ドライバがない場合はスクリーンショットなしで FAIL を記録すること。"""
        listener.on_test_start("test_x")
        listener.on_test_failure("test_x", "boom")
        event = pipeline.current_node().events[-1]
        assert event.kind is EventKind.FAIL
        assert event.message == "boom"
        assert event.artifacts == ()

    def test_failure_uses_extra_candidates(
        self, listener: ExecutionListener, pipeline: ReportingPipeline, fake_driver: FakeDriver,
    ) -> None:
        """インスタンス以外の候補（フィクスチャ値）からもドライバを取得すること。"""
        listener.on_test_start("test_y")
        listener.on_test_failure("test_y", "boom", None, "not a driver", PageTest(fake_driver))
        event = pipeline.current_node().events[-1]
        assert [a.kind for a in event.artifacts] == ["image"]

    def test_callbacks_without_test_do_not_raise(self, listener: ExecutionListener) -> None:
        listener.on_test_success("orphan")
        listener.on_test_failure("orphan", ValueError("x"))
        listener.on_test_skipped("orphan")

    def test_finished_test_is_unregistered(self, listener: ExecutionListener, pipeline: ReportingPipeline) -> None:
        """on_test_finished 後は実行中テストがなく、後続の記録はどのテストにも付かないこと。"""
        listener.on_test_start("test_login")
        listener.on_test_success("test_login")
        node = pipeline.current_node()
        listener.on_test_finished("test_login")

        assert pipeline.current_node() is None
        assert pipeline.registry.active_count() == 0
        listener.on_test_success("test_login")
        assert [e.kind for e in node.events] == [EventKind.PASS]
        listener.on_test_finished("test_login")

    def test_suite_end_twice(self, listener: ExecutionListener) -> None:
        first = listener.on_suite_end()
        assert listener.on_suite_end() == first


class TestInternalErrors:
    """内部エラーの格下げ。"""

    def test_internal_error_is_downgraded(
        self,
        listener: ExecutionListener,
        pipeline: ReportingPipeline,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """記録中の内部エラーは送出されず、テキスト添付として残ること。"""
        listener.on_test_start("test_z")

        def broken(*args: object, **kwargs: object) -> None:
            raise RuntimeError("reporter exploded")

        monkeypatch.setattr(pipeline, "log_fail", broken)
        listener.on_test_failure("test_z", "boom")

        event = pipeline.current_node().events[-1]
        assert event.kind is EventKind.INFO
        assert "listener_on_test_failure" in event.message
        attached = event.artifacts[0].path.read_text(encoding="utf-8")
        assert "reporter exploded" in attached

    def test_start_after_flush_does_not_raise(self, listener: ExecutionListener) -> None:
        """フラッシュ後のテスト開始もランナーへは送出されないこと。"""
        listener.on_suite_end()
        listener.on_test_start("late")

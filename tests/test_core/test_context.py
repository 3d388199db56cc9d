"""
TestContextRegistry のユニットテスト

スレッドごとのコンテキスト分離を、複数スレッドを同時に走らせて検証する。
"""

from __future__ import annotations

import threading

import pytest

from flowguard.core.context import TestContext, TestContextRegistry


class TestSingleThread:
    """呼び出し元スレッドだけで完結する操作。"""

    def test_current_before_start(self) -> None:
        """開始前は None を返し、例外を送出しないこと。"""
        assert TestContextRegistry().current() is None

    def test_start_and_current(self) -> None:
        registry = TestContextRegistry()
        node = object()
        context = registry.start("test_login", "ログインできる", node)

        assert registry.current() is context
        assert context.name == "test_login"
        assert context.description == "ログインできる"
        assert context.node is node
        assert context.thread_id == threading.get_ident()

    def test_start_overwrites(self) -> None:
        """同じスレッドで次のテストを開始すると上書きされること。"""
        registry = TestContextRegistry()
        registry.start("first")
        second = registry.start("second")
        assert registry.current() is second
        assert registry.active_count() == 1

    def test_clear(self) -> None:
        registry = TestContextRegistry()
        context = registry.start("t")
        assert registry.clear() is context
        assert registry.current() is None
        assert registry.clear() is None

    def test_context_is_frozen(self) -> None:
        context = TestContextRegistry().start("t")
        with pytest.raises(AttributeError):
            context.name = "other"  # type: ignore[misc]

    def test_invalid_stripes(self) -> None:
        with pytest.raises(ValueError):
            TestContextRegistry(stripes=0)


class TestConcurrency:
    """複数スレッドからの同時アクセス。"""

    @pytest.mark.parametrize("stripes", [1, 4, 16])
    def test_threads_see_only_their_own_context(self, stripes: int) -> None:
        """8 スレッド以上が同時に開始しても、各スレッドは自分のコンテキストだけを参照すること。"""
        registry = TestContextRegistry(stripes=stripes)
        thread_count = 12
        barrier = threading.Barrier(thread_count)
        observed: dict[int, list[TestContext]] = {}
        errors: list[BaseException] = []

        def worker(index: int) -> None:
            try:
                barrier.wait()
                seen = []
                for round_no in range(50):
                    registry.start(f"test_{index}_{round_no}", node=index)
                    current = registry.current()
                    assert current is not None
                    seen.append(current)
                observed[index] = seen
            except BaseException as exc:  # スレッド内の失敗をメインスレッドへ伝える
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(thread_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert len(observed) == thread_count
        for index, contexts in observed.items():
            assert all(c.node == index for c in contexts)
            assert [c.name for c in contexts] == [f"test_{index}_{n}" for n in range(50)]

    def test_active_count_across_threads(self) -> None:
        """各スレッドのコンテキストは他スレッドの開始で消えないこと。"""
        registry = TestContextRegistry()
        thread_count = 8
        started = threading.Barrier(thread_count + 1)
        release = threading.Event()

        def worker(index: int) -> None:
            registry.start(f"test_{index}")
            started.wait()
            release.wait(timeout=30)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(thread_count)]
        for t in threads:
            t.start()
        started.wait(timeout=30)
        try:
            assert registry.active_count() == thread_count
            assert registry.current() is None
        finally:
            release.set()
            for t in threads:
                t.join(timeout=30)

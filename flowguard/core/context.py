"""
TestContextRegistry — 実行スレッドと実行中テストの対応表

呼び出し元スレッドの識別子をキーに、実行中テストのレポートノードを保持する。
1 スレッドにつき同時に 1 つのテストコンテキストのみを持ち、
同じスレッドで次のテストが開始されると上書きされる。

並列実行時に無関係なテスト同士が 1 つのロックで直列化されないよう、
対応表はストライプ（独立した dict + ロックの組）に分割して管理する。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)

_DEFAULT_STRIPES = 16


# ---------------------------------------------------------------------------
# TestContext
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TestContext:
    """1 スレッドで実行中のテストのコンテキスト。

    Attributes:
        thread_id: 所有スレッドの識別子
        name: テスト名
        description: テストの説明
        node: レポートノード（ReportingPipeline が生成したもの）
        started_at: 開始日時
    """

    __test__ = False  # pytest に収集させない

    thread_id: int
    name: str
    description: Optional[str] = None
    node: Any = None
    started_at: datetime = field(default_factory=datetime.now)


# ---------------------------------------------------------------------------
# TestContextRegistry 本体
# ---------------------------------------------------------------------------

class _Stripe:
    __slots__ = ("lock", "entries")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.entries: dict[int, TestContext] = {}


class TestContextRegistry:
    """スレッド識別子 → TestContext の対応表。

    全ての操作は呼び出し元スレッドの識別子をキーとし、
    他スレッドのエントリを参照・変更することはない。
    """

    __test__ = False  # pytest に収集させない

    def __init__(self, stripes: int = _DEFAULT_STRIPES) -> None:
        if stripes < 1:
            raise ValueError(f"stripes は 1 以上を指定してください: {stripes}")
        self._stripes = [_Stripe() for _ in range(stripes)]

    def _stripe_for(self, thread_id: int) -> _Stripe:
        # get_ident() はアドレス由来で下位ビットが揃いやすいため攪拌してから分配する
        mixed = (thread_id * 0x9E3779B1) >> 16
        return self._stripes[mixed % len(self._stripes)]

    def start(
        self,
        name: str,
        description: Optional[str] = None,
        node: Any = None,
    ) -> TestContext:
        """呼び出し元スレッドのテストコンテキストを開始する。

        同じスレッドの前回のコンテキストは上書きされる。

        Args:
            name: テスト名
            description: テストの説明
            node: 関連付けるレポートノード

        Returns:
            開始した TestContext
        """
        thread_id = threading.get_ident()
        context = TestContext(
            thread_id=thread_id,
            name=name,
            description=description,
            node=node,
        )
        stripe = self._stripe_for(thread_id)
        with stripe.lock:
            previous = stripe.entries.get(thread_id)
            stripe.entries[thread_id] = context
        if previous is not None:
            logger.debug("スレッド %d のコンテキストを置き換えました: %s → %s",
                         thread_id, previous.name, name)
        return context

    def current(self) -> Optional[TestContext]:
        """呼び出し元スレッドのテストコンテキストを返す。未開始なら None。"""
        thread_id = threading.get_ident()
        stripe = self._stripe_for(thread_id)
        with stripe.lock:
            return stripe.entries.get(thread_id)

    def clear(self) -> Optional[TestContext]:
        """呼び出し元スレッドのテストコンテキストを削除し、削除したものを返す。"""
        thread_id = threading.get_ident()
        stripe = self._stripe_for(thread_id)
        with stripe.lock:
            return stripe.entries.pop(thread_id, None)

    def active_count(self) -> int:
        """全スレッドで保持されているコンテキストの数。"""
        total = 0
        for stripe in self._stripes:
            with stripe.lock:
                total += len(stripe.entries)
        return total

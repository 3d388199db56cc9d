"""
待機エンジン — 非同期に変化する UI と同期的なテストロジックの橋渡し

「ブラウザがまだ期待した状態に達していない」ことと「テストロジックは
今その状態を期待している」ことの間を、ポーリングベースの待機で埋める。

主な機能:
  - WaitPolicy: タイムアウト・ポーリング間隔・一時的エラー種別の組
  - Ready / NOT_READY / Failed: 条件評価の三値結果
  - await_condition(): 条件が成立するまでブロッキングでポーリング
  - visibility_of / presence_of / interactability_of / page_ready /
    title_contains / text_contains: 標準の待機条件
  - WaitEngine: ドライバに束縛された待機 API
  - FluentWait: 呼び出しごとにポリシーを上書きするビルダー
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from . import scripts
from .driver import (
    DetachedElementError,
    ElementHandle,
    ElementNotFoundError,
    InteractionTarget,
    Locator,
    StaleElementError,
    UiDriver,
    resolve_target,
)
from .errors import WaitTimeoutError, describe_target

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# 待機ポリシー
# ---------------------------------------------------------------------------

DEFAULT_IGNORED: frozenset[type[BaseException]] = frozenset(
    {ElementNotFoundError, StaleElementError}
)
"""待機中に「まだ準備ができていない」として扱う例外種別のデフォルト。"""


@dataclass(frozen=True)
class WaitPolicy:
    """待機ポリシー。生成後は変更できない。

    Attributes:
        timeout: タイムアウト（秒）
        poll_interval: ポーリング間隔（秒）
        ignored: ポーリング中に握りつぶす一時的エラーの種別
    """

    timeout: float = 20.0
    poll_interval: float = 0.5
    ignored: frozenset[type[BaseException]] = field(default=DEFAULT_IGNORED)

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout は正の値を指定してください: {self.timeout}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval は正の値を指定してください: {self.poll_interval}")
        if self.poll_interval > self.timeout:
            raise ValueError(
                f"poll_interval ({self.poll_interval}) は timeout ({self.timeout}) 以下にしてください"
            )
        # list や set で渡された場合も frozenset に正規化する
        object.__setattr__(self, "ignored", frozenset(self.ignored))

    def with_overrides(
        self,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        ignored: Optional[frozenset[type[BaseException]]] = None,
    ) -> WaitPolicy:
        """指定した項目だけを差し替えた新しいポリシーを返す。"""
        changes: dict[str, Any] = {}
        if timeout is not None:
            changes["timeout"] = timeout
        if poll_interval is not None:
            changes["poll_interval"] = poll_interval
        if ignored is not None:
            changes["ignored"] = frozenset(ignored)
        return replace(self, **changes)

    def is_ignored(self, error: BaseException) -> bool:
        return isinstance(error, tuple(self.ignored))


_default_policy = WaitPolicy()
_default_policy_lock = threading.Lock()


def get_default_policy() -> WaitPolicy:
    """プロセス全体のデフォルト待機ポリシーを返す。"""
    return _default_policy


def set_default_policy(policy: WaitPolicy) -> None:
    """プロセス全体のデフォルト待機ポリシーを差し替える（起動時に一度だけ呼ぶ想定）。"""
    global _default_policy
    with _default_policy_lock:
        _default_policy = policy
    logger.info(
        "デフォルト待機ポリシーを設定しました: timeout=%.2fs, poll=%.2fs",
        policy.timeout, policy.poll_interval,
    )


# ---------------------------------------------------------------------------
# 条件評価の三値結果
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Ready(Generic[T]):
    """条件が成立した。value が await_condition() の戻り値になる。"""

    value: T


@dataclass(frozen=True)
class NotReady:
    """条件はまだ成立していない。"""


NOT_READY = NotReady()


@dataclass(frozen=True)
class Failed:
    """条件の評価中にエラーが発生した。

    エラー種別がポリシーの ignored に含まれる場合は NOT_READY と同様に扱われ、
    含まれない場合はそのまま送出される。
    """

    error: BaseException


PollResult = Union[Ready[T], NotReady, Failed]
Condition = Callable[[UiDriver], PollResult]


def _evaluate(predicate: Callable[[], Any]) -> PollResult:
    """述語を評価し、結果を三値に正規化する。

    PollResult 以外の戻り値は None / False を未成立、それ以外を成立とみなす。
    """
    try:
        result = predicate()
    except Exception as exc:
        return Failed(exc)
    if isinstance(result, (Ready, NotReady, Failed)):
        return result
    if result is None or result is False:
        return NOT_READY
    return Ready(result)


# ---------------------------------------------------------------------------
# ポーリングループ
# ---------------------------------------------------------------------------

def await_condition(
    predicate: Callable[[], Any],
    policy: Optional[WaitPolicy] = None,
    description: str = "待機条件",
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """述語が成立するまでポーリングし、成立時の値を返す。

    ポーリング間隔ごとに sleep するため、ビジーループにはならない。
    タイムアウト直前の残り時間が poll_interval より短い場合は残り時間だけ待ち、
    期限ちょうどに最後の評価を行う。

    Args:
        predicate: 引数なしの述語。PollResult または任意の値を返す
        policy: 待機ポリシー（None の場合はデフォルトポリシー）
        description: タイムアウト時のメッセージに使用する条件の説明
        clock: 単調増加する時刻関数（テスト用に差し替え可能）
        sleep: 待機関数（テスト用に差し替え可能）

    Returns:
        Ready に格納された値

    Raises:
        WaitTimeoutError: タイムアウトまでに条件が成立しなかった場合
        Exception: ignored に含まれないエラーが発生した場合（そのまま送出）
    """
    policy = policy or get_default_policy()
    start = clock()
    deadline = start + policy.timeout
    last_error: Optional[BaseException] = None
    attempts = 0

    while True:
        attempts += 1
        outcome = _evaluate(predicate)

        if isinstance(outcome, Ready):
            logger.debug(
                "%s が成立しました（%.0fms 経過, %d 回目）",
                description, (clock() - start) * 1000, attempts,
            )
            return outcome.value

        if isinstance(outcome, Failed):
            if not policy.is_ignored(outcome.error):
                raise outcome.error
            last_error = outcome.error

        remaining = deadline - clock()
        if remaining <= 0:
            logger.error(
                "%s が %.2f 秒以内に成立しませんでした（%d 回評価）",
                description, policy.timeout, attempts,
            )
            raise WaitTimeoutError(description, policy.timeout, last_error)

        sleep(min(policy.poll_interval, remaining))


# ---------------------------------------------------------------------------
# 標準の待機条件
# ---------------------------------------------------------------------------

def _failed(target: InteractionTarget, error: Exception) -> Failed:
    """条件評価中のエラーを Failed にする。

    解決済みハンドルの切り離しは DetachedElementError に変換し、
    ポリシーの ignored に関わらず即座に送出させる。
    """
    if isinstance(error, StaleElementError) and not isinstance(target, Locator):
        detached = DetachedElementError(
            f"要素ハンドルが DOM から切り離されています: {describe_target(target)}"
        )
        detached.__cause__ = error
        return Failed(detached)
    return Failed(error)


def _has_extent(element: ElementHandle) -> bool:
    width, height = element.size()
    return width > 0 and height > 0


def visibility_of(target: InteractionTarget) -> Condition:
    """要素が存在し、サイズを持って描画されていること。"""

    def _condition(driver: UiDriver) -> PollResult:
        try:
            element = resolve_target(driver, target)
            if element.is_displayed() and _has_extent(element):
                return Ready(element)
            return NOT_READY
        except Exception as exc:
            return _failed(target, exc)

    return _condition


def presence_of(target: InteractionTarget) -> Condition:
    """要素が DOM に存在すること（描画状態は問わない）。"""

    def _condition(driver: UiDriver) -> PollResult:
        try:
            return Ready(resolve_target(driver, target))
        except Exception as exc:
            return _failed(target, exc)

    return _condition


def interactability_of(target: InteractionTarget) -> Condition:
    """要素が可視・有効で、他の要素に覆われていないこと。"""

    def _condition(driver: UiDriver) -> PollResult:
        try:
            element = resolve_target(driver, target)
            if not (element.is_displayed() and _has_extent(element)):
                return NOT_READY
            if not element.is_enabled():
                return NOT_READY
            if not driver.execute_script(scripts.IS_UNOBSCURED, element):
                return NOT_READY
            return Ready(element)
        except Exception as exc:
            return _failed(target, exc)

    return _condition


def page_ready(script: str = scripts.DOCUMENT_READY) -> Condition:
    """ページ全体の準備完了を示すスクリプトが真を返すこと。

    Args:
        script: 引数なしの関数式（例: ``() => window.appLoaded === true``）
    """

    def _condition(driver: UiDriver) -> PollResult:
        try:
            return Ready(True) if driver.execute_script(script) else NOT_READY
        except Exception as exc:
            return Failed(exc)

    return _condition


def title_contains(fragment: str) -> Condition:
    """ページタイトルが fragment を含むこと。"""

    def _condition(driver: UiDriver) -> PollResult:
        try:
            title = driver.title()
            return Ready(title) if fragment in title else NOT_READY
        except Exception as exc:
            return Failed(exc)

    return _condition


def text_contains(target: InteractionTarget, fragment: str) -> Condition:
    """要素のテキストが fragment を含むこと。"""

    def _condition(driver: UiDriver) -> PollResult:
        try:
            element = resolve_target(driver, target)
            return Ready(element) if fragment in element.text() else NOT_READY
        except Exception as exc:
            return _failed(target, exc)

    return _condition


# ---------------------------------------------------------------------------
# WaitEngine
# ---------------------------------------------------------------------------

class WaitEngine:
    """ドライバに束縛された待機 API。

    待機はスレッドをブロックするポーリングで行う。各テストスレッドは
    自身のブラウザセッションを 1 つ持つため、待機中に他の仕事はない。
    """

    def __init__(
        self,
        driver: UiDriver,
        policy: Optional[WaitPolicy] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._driver = driver
        self._policy = policy
        self._clock = clock
        self._sleep = sleep

    @property
    def driver(self) -> UiDriver:
        return self._driver

    @property
    def policy(self) -> WaitPolicy:
        """このエンジンの既定ポリシー（未指定時はプロセスのデフォルト）。"""
        return self._policy or get_default_policy()

    def until(
        self,
        condition: Condition,
        policy: Optional[WaitPolicy] = None,
        description: str = "待機条件",
    ) -> Any:
        """条件が成立するまで待機し、成立時の値を返す。"""
        return await_condition(
            lambda: condition(self._driver),
            policy or self.policy,
            description,
            clock=self._clock,
            sleep=self._sleep,
        )

    # ----- 標準条件のショートカット -----

    def for_visibility(
        self, target: InteractionTarget, policy: Optional[WaitPolicy] = None,
    ) -> ElementHandle:
        return self.until(
            visibility_of(target), policy, f"要素の可視化 ({describe_target(target)})",
        )

    def for_presence(
        self, target: InteractionTarget, policy: Optional[WaitPolicy] = None,
    ) -> ElementHandle:
        return self.until(
            presence_of(target), policy, f"要素の存在 ({describe_target(target)})",
        )

    def for_interactability(
        self, target: InteractionTarget, policy: Optional[WaitPolicy] = None,
    ) -> ElementHandle:
        return self.until(
            interactability_of(target), policy,
            f"要素の操作可能化 ({describe_target(target)})",
        )

    def for_page_ready(
        self, script: str = scripts.DOCUMENT_READY, policy: Optional[WaitPolicy] = None,
    ) -> bool:
        return self.until(page_ready(script), policy, "ページの読み込み完了")

    def for_title_contains(
        self, fragment: str, policy: Optional[WaitPolicy] = None,
    ) -> str:
        return self.until(
            title_contains(fragment), policy, f"タイトルに '{fragment}' を含む",
        )

    def for_text_contains(
        self, target: InteractionTarget, fragment: str, policy: Optional[WaitPolicy] = None,
    ) -> ElementHandle:
        return self.until(
            text_contains(target, fragment), policy,
            f"{describe_target(target)} のテキストに '{fragment}' を含む",
        )

    # ----- 待機を伴わない補助 -----

    def is_present(self, target: Locator) -> bool:
        """Locator に一致する要素が現時点で存在するかを返す（待機しない）。"""
        try:
            return len(self._driver.find_elements(target)) > 0
        except Exception as exc:
            logger.debug("要素の存在確認中にエラー: %s", exc)
            return False

    def pause(self, seconds: float = 0.5) -> None:
        """固定時間待機する。条件待機で表現できない場合のみ使用する。"""
        self._sleep(seconds)

    def fluent(self) -> FluentWait:
        """このエンジンのポリシーを起点とする FluentWait を返す。"""
        return FluentWait(self, self.policy)


class FluentWait:
    """呼び出しごとに待機ポリシーを上書きする不変ビルダー。

    使用例::

        engine.fluent().with_timeout(5).polling_every(0.2) \\
            .not_ignoring(StaleElementError).until(visibility_of(locator))
    """

    def __init__(self, engine: WaitEngine, policy: WaitPolicy) -> None:
        self._engine = engine
        self._policy = policy

    @property
    def policy(self) -> WaitPolicy:
        return self._policy

    def with_timeout(self, seconds: float) -> FluentWait:
        return FluentWait(self._engine, self._policy.with_overrides(timeout=seconds))

    def polling_every(self, seconds: float) -> FluentWait:
        return FluentWait(self._engine, self._policy.with_overrides(poll_interval=seconds))

    def ignoring(self, *kinds: type[BaseException]) -> FluentWait:
        ignored = self._policy.ignored | frozenset(kinds)
        return FluentWait(self._engine, self._policy.with_overrides(ignored=ignored))

    def not_ignoring(self, *kinds: type[BaseException]) -> FluentWait:
        """指定種別（とそのサブクラス）を握りつぶさず即座に送出させる。"""
        ignored = frozenset(k for k in self._policy.ignored if not issubclass(k, kinds))
        return FluentWait(self._engine, replace(self._policy, ignored=ignored))

    def until(self, condition: Condition, description: str = "待機条件") -> Any:
        return self._engine.until(condition, self._policy, description)

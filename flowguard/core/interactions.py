"""
InteractionWrapper — 待機とフォールバックを備えた UI 操作ラッパー

クリック・入力・テキスト取得を「可視化待ち → 操作可能待ち → スクロール →
ネイティブ操作」の順で実行する。ネイティブ操作の経路で例外が発生した場合は
対象を再解決し、スクリプト経由の操作で 1 回だけ再試行する。

主な機能:
  - click / type_text / read_text: フォールバック付きの基本操作
  - submit / enter_value: 成功時に PASS イベントを記録する操作
  - validate_dropdown_options: ドロップダウン選択肢の検証
  - validation_message / has_validation_warning / is_field_required /
    placeholder_text / has_required_marker: フォーム状態の照会
  - clear_fields / click_if_enabled / scroll_into_view / js_click / reload_page
  - set_zoom / zoom_in / zoom_out / reset_zoom: ページのズーム率の操作
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Sequence

from . import scripts
from .driver import (
    DriverError,
    ElementHandle,
    InteractionTarget,
    UiDriver,
    resolve_target,
)
from .errors import InteractionFailure, WaitTimeoutError, describe_target
from .waits import WaitEngine, WaitPolicy

if TYPE_CHECKING:
    from .reporting import ReportingPipeline

logger = logging.getLogger(__name__)

# 必須属性とみなす値（HTML 属性は値なしで "" になる）
_REQUIRED_VALUES = frozenset({"", "true", "required"})

# ズーム率（%）
DEFAULT_ZOOM = 100
ZOOM_STEP = 10
MIN_ZOOM = 10


class InteractionWrapper:
    """ドライバ操作に待機・フォールバック・レポート記録を付加するラッパー。

    Attributes:
        driver: 操作対象のドライバ
        waits: 待機に使用する WaitEngine
        reporter: イベントの記録先（None の場合は記録しない）
    """

    def __init__(
        self,
        driver: UiDriver,
        waits: Optional[WaitEngine] = None,
        reporter: Optional[ReportingPipeline] = None,
    ) -> None:
        self.driver = driver
        self.waits = waits or WaitEngine(driver)
        self.reporter = reporter

    # -------------------------------------------------------------------
    # 基本操作
    # -------------------------------------------------------------------

    def click(self, target: InteractionTarget, policy: Optional[WaitPolicy] = None) -> None:
        """要素をクリックする。

        ネイティブクリックが失敗した場合は ``el.click()`` スクリプトで 1 回だけ再試行する。

        Raises:
            InteractionFailure: 再試行も失敗した場合
        """
        try:
            element = self._prepare(target, policy)
            element.click()
        except Exception as exc:
            self._fallback(
                target, "click", exc,
                lambda el: self.driver.execute_script(scripts.CLICK, el),
            )
        logger.debug("クリックしました: %s", describe_target(target))

    def type_text(
        self,
        target: InteractionTarget,
        text: str,
        policy: Optional[WaitPolicy] = None,
    ) -> None:
        """入力欄をクリアしてからテキストを入力する（追記はしない）。

        ネイティブ入力が失敗した場合は値の直接代入と input / change イベントの
        発火で 1 回だけ再試行する。

        Raises:
            InteractionFailure: 再試行も失敗した場合
        """
        try:
            element = self._prepare(target, policy)
            element.clear()
            element.send_keys(text)
        except Exception as exc:
            self._fallback(
                target, "type", exc,
                lambda el: self.driver.execute_script(scripts.SET_VALUE, el, text),
            )
        logger.debug("入力しました: %s", describe_target(target))

    def read_text(self, target: InteractionTarget, policy: Optional[WaitPolicy] = None) -> str:
        """要素の表示テキストを前後の空白を除いて返す。

        innerText による再試行も表示中の要素に限る。

        Raises:
            InteractionFailure: 再試行も失敗した場合、または要素が表示されていない場合
        """
        try:
            element = self.waits.for_visibility(target, policy)
            return element.text().strip()
        except Exception as exc:
            value = self._fallback(target, "read", exc, self._inner_text)
            return str(value or "").strip()

    # -------------------------------------------------------------------
    # レポートを伴う操作
    # -------------------------------------------------------------------

    def submit(self, target: InteractionTarget, description: Optional[str] = None) -> None:
        """送信ボタン等の重要なクリックを行い、成功を PASS として記録する。"""
        self.click(target)
        self._report("log_pass", f"{description or describe_target(target)} をクリックしました")

    def enter_value(self, target: InteractionTarget, text: str) -> None:
        """テキストを入力し、成功を PASS として記録する。"""
        self.type_text(target, text)
        self._report("log_pass", f"'{text}' を入力しました: {describe_target(target)}")

    def click_if_enabled(
        self, target: InteractionTarget, description: Optional[str] = None,
    ) -> bool:
        """要素が有効な場合のみクリックする。

        無効な場合はクリックせず INFO を記録して False を返す。
        """
        label = description or describe_target(target)
        element = self.waits.for_presence(target)
        if not element.is_enabled():
            self._report("log_info", f"{label} が無効のためクリックをスキップしました")
            return False
        self.click(target)
        self._report("log_pass", f"{label} をクリックしました")
        return True

    def validate_dropdown_options(
        self, target: InteractionTarget, expected: Iterable[str],
    ) -> None:
        """期待する選択肢が全てドロップダウンに含まれることを検証する。

        順序は問わない。余分な選択肢があっても失敗にはしない。

        Raises:
            AssertionError: 不足している選択肢がある場合（不足分を全て列挙）
        """
        element = self.waits.for_presence(target)
        actual = self.driver.execute_script(scripts.OPTION_LABELS, element) or []
        missing = find_missing_options(actual, expected)
        if missing:
            message = (
                f"ドロップダウン {describe_target(target)} に選択肢がありません: "
                + ", ".join(missing)
            )
            self._report("log_fail", message, self.driver)
            raise AssertionError(message)
        self._report("log_pass", f"ドロップダウン {describe_target(target)} の選択肢を確認しました")

    # -------------------------------------------------------------------
    # フォーム状態の照会
    # -------------------------------------------------------------------

    def validation_message(self, target: InteractionTarget) -> str:
        """ブラウザのフォーム検証メッセージを返す。取得できない場合は空文字。"""
        try:
            element = resolve_target(self.driver, target)
            return str(self.driver.execute_script(scripts.VALIDATION_MESSAGE, element) or "")
        except DriverError as exc:
            logger.debug("検証メッセージを取得できません: %s (%s)", describe_target(target), exc)
            return ""

    def has_validation_warning(self, target: InteractionTarget, expected: str) -> bool:
        """フィールドが無効状態で、検証メッセージに expected を含むかを返す。"""
        try:
            element = resolve_target(self.driver, target)
            if self.driver.execute_script(scripts.CHECK_VALIDITY, element):
                return False
            message = str(self.driver.execute_script(scripts.VALIDATION_MESSAGE, element) or "")
        except DriverError as exc:
            logger.debug("検証状態を取得できません: %s (%s)", describe_target(target), exc)
            return False
        self._report("log_info", f"検証メッセージ: {message}")
        return expected in message

    def is_field_required(self, target: InteractionTarget) -> bool:
        """required 属性を持つフィールドかを返す。"""
        try:
            value = resolve_target(self.driver, target).get_attribute("required")
        except DriverError:
            return False
        return value is not None and value.strip().lower() in _REQUIRED_VALUES

    def placeholder_text(self, target: InteractionTarget) -> str:
        """placeholder 属性の値を返す。要素が表示されない場合は空文字。"""
        try:
            element = self.waits.for_visibility(target)
            return element.get_attribute("placeholder") or ""
        except (WaitTimeoutError, DriverError) as exc:
            logger.debug("placeholder を取得できません: %s (%s)", describe_target(target), exc)
            return ""

    def has_required_marker(self, target: InteractionTarget) -> bool:
        """フィールドを囲むフォームグループに必須マーク（* / required）があるかを返す。"""
        try:
            element = resolve_target(self.driver, target)
            html = str(self.driver.execute_script(scripts.CLOSEST_GROUP_HTML, element) or "")
        except DriverError:
            return False
        return "*" in html or "required" in html

    # -------------------------------------------------------------------
    # ユーティリティ
    # -------------------------------------------------------------------

    def clear_fields(self, targets: Sequence[InteractionTarget]) -> int:
        """複数の入力欄をクリアする。クリアできなかった欄は警告のみ出して続行する。

        Returns:
            クリアできた欄の数
        """
        cleared = 0
        for target in targets:
            try:
                resolve_target(self.driver, target).clear()
                cleared += 1
            except DriverError as exc:
                logger.warning("入力欄をクリアできませんでした: %s (%s)", describe_target(target), exc)
        return cleared

    def scroll_into_view(self, target: InteractionTarget) -> ElementHandle:
        element = self.waits.for_presence(target)
        self.driver.execute_script(scripts.SCROLL_INTO_VIEW, element)
        return element

    def js_click(self, target: InteractionTarget) -> None:
        """スクリプト経由でクリックする（待機・再試行なし）。"""
        element = resolve_target(self.driver, target)
        self.driver.execute_script(scripts.CLICK, element)

    def reload_page(self, policy: Optional[WaitPolicy] = None) -> None:
        """ページを再読み込みし、読み込み完了まで待機する。"""
        self.driver.refresh()
        self.waits.for_page_ready(policy=policy)

    # -------------------------------------------------------------------
    # ズーム
    # -------------------------------------------------------------------

    def current_zoom(self) -> float:
        """ページのズーム率（%）を返す。未設定の場合は 100。"""
        value = self.driver.execute_script(scripts.GET_ZOOM)
        try:
            return float(value)
        except (TypeError, ValueError):
            return float(DEFAULT_ZOOM)

    def set_zoom(self, percent: float) -> None:
        """ページのズーム率を percent（%）に設定する。

        Raises:
            ValueError: percent が 0 以下の場合
        """
        if percent <= 0:
            raise ValueError(f"ズーム率は正の値を指定してください: {percent}")
        self.driver.execute_script(scripts.SET_ZOOM, percent)
        logger.debug("ズーム率を %s%% に設定しました", percent)

    def zoom_in(self, step: float = ZOOM_STEP) -> float:
        """ズーム率を step だけ上げ、設定後の値を返す。"""
        percent = self.current_zoom() + step
        self.set_zoom(percent)
        return percent

    def zoom_out(self, step: float = ZOOM_STEP) -> float:
        """ズーム率を step だけ下げ、設定後の値を返す（MIN_ZOOM 未満にはしない）。"""
        percent = max(self.current_zoom() - step, MIN_ZOOM)
        self.set_zoom(percent)
        return percent

    def reset_zoom(self) -> None:
        self.set_zoom(DEFAULT_ZOOM)

    # -------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------

    def _prepare(self, target: InteractionTarget, policy: Optional[WaitPolicy]) -> ElementHandle:
        """可視化・操作可能化を待ち、画面中央へスクロールした要素を返す。"""
        self.waits.for_visibility(target, policy)
        element = self.waits.for_interactability(target, policy)
        self.driver.execute_script(scripts.SCROLL_INTO_VIEW, element)
        return element

    def _inner_text(self, element: ElementHandle) -> Any:
        if not element.is_displayed():
            raise DriverError("要素が表示されていません")
        return self.driver.execute_script(scripts.INNER_TEXT, element)

    def _fallback(
        self,
        target: InteractionTarget,
        action: str,
        cause: BaseException,
        perform: Callable[[ElementHandle], Any],
    ) -> Any:
        """対象を再解決してスクリプト操作で 1 回だけ再試行する。"""
        description = describe_target(target)
        logger.warning(
            "%s のネイティブ操作に失敗したためスクリプトで再試行します: %s (%s: %s)",
            action, description, type(cause).__name__, cause,
        )
        try:
            element = resolve_target(self.driver, target)
            return perform(element)
        except Exception as exc:
            failure = InteractionFailure(target, exc, action, native_cause=cause)
            self._report("log_fail", str(failure), self.driver)
            raise failure from exc

    def _report(self, method: str, message: str, *args: Any) -> None:
        if self.reporter is None:
            return
        getattr(self.reporter, method)(message, *args)


def find_missing_options(actual: Iterable[str], expected: Iterable[str]) -> list[str]:
    """expected のうち actual に含まれないラベルを expected の順序で返す。

    比較は前後の空白を除いて行う。重複した期待値は 1 回だけ報告する。
    """
    available = {str(label).strip() for label in actual}
    missing: list[str] = []
    for label in expected:
        key = label.strip()
        if key not in available and key not in missing:
            missing.append(key)
    return missing

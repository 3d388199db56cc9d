"""
ドライバ抽象 — UI ドライバと要素ハンドルの共通インターフェース

待機エンジン・操作ラッパー・アーティファクト取得が呼び出すドライバ操作を
Protocol として定義する。具体的なブラウザ自動化ライブラリ（Playwright 等）は
アダプタを通じてこのインターフェースを満たす。

主な構成:
  - Locator: 要素の特定方法（strategy + selector）を表す値オブジェクト
  - ElementHandle / UiDriver: ドライバ抽象の Protocol
  - DriverError / TransientDriverError: ドライバ由来エラーの分類
  - resolve_target(): Locator または要素ハンドルを要素に解決する
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import FlowguardError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ドライバ由来エラー
# ---------------------------------------------------------------------------

class DriverError(FlowguardError):
    """ドライバ操作中に発生したエラー。"""


class TransientDriverError(DriverError):
    """画面遷移中などに一時的に発生するエラーの基底クラス。

    待機中は「まだ準備ができていない」として扱われる。
    """


class ElementNotFoundError(TransientDriverError):
    """Locator に一致する要素が（まだ）存在しない。"""


class StaleElementError(TransientDriverError):
    """要素ハンドルが DOM から切り離された。"""


class DetachedElementError(DriverError):
    """解決済みの要素ハンドル（Locator ではない操作対象）が切り離されている。

    再解決できないため待機中も一時的エラーとして扱わず、即座に送出される。
    """


# ---------------------------------------------------------------------------
# Locator
# ---------------------------------------------------------------------------

LocatorStrategy = Literal[
    "css", "xpath", "id", "name", "text", "test_id", "role", "label", "placeholder",
]


class Locator(BaseModel):
    """要素の特定方法を表す不変の値オブジェクト。

    シリアライズ可能（model_dump）かつハッシュ可能で、生成後は変更されない。
    待機・リトライのたびに再解決されるため、DOM が置き換わっても追従できる。
    """

    model_config = ConfigDict(frozen=True)

    strategy: LocatorStrategy = Field(..., description="特定方式")
    selector: str = Field(..., description="方式ごとのセレクタ文字列")

    @field_validator("selector")
    @classmethod
    def _selector_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("selector は空にできません")
        return value

    # ----- 生成ヘルパー -----

    @classmethod
    def css(cls, selector: str) -> Locator:
        return cls(strategy="css", selector=selector)

    @classmethod
    def xpath(cls, selector: str) -> Locator:
        return cls(strategy="xpath", selector=selector)

    @classmethod
    def by_id(cls, element_id: str) -> Locator:
        return cls(strategy="id", selector=element_id)

    @classmethod
    def by_name(cls, name: str) -> Locator:
        return cls(strategy="name", selector=name)

    @classmethod
    def by_text(cls, text: str) -> Locator:
        return cls(strategy="text", selector=text)

    @classmethod
    def by_test_id(cls, test_id: str) -> Locator:
        return cls(strategy="test_id", selector=test_id)

    def describe(self) -> str:
        """``strategy=selector`` 形式の説明文字列を返す。"""
        return f"{self.strategy}={self.selector}"

    def __str__(self) -> str:
        return self.describe()


# ---------------------------------------------------------------------------
# ドライバ Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class ElementHandle(Protocol):
    """解決済みの要素ハンドル。

    DOM から切り離された後に操作すると StaleElementError を送出する。
    """

    def is_displayed(self) -> bool: ...

    def is_enabled(self) -> bool: ...

    def size(self) -> tuple[float, float]: ...

    def text(self) -> str: ...

    def get_attribute(self, name: str) -> Optional[str]: ...

    def clear(self) -> None: ...

    def send_keys(self, text: str) -> None: ...

    def click(self) -> None: ...


@runtime_checkable
class UiDriver(Protocol):
    """UI ドライバの共通インターフェース。

    execute_script() のスクリプトは引数を受け取る JavaScript の関数式
    （例: ``el => el.click()``）とする。
    """

    def find_elements(self, locator: Locator) -> list[ElementHandle]: ...

    def execute_script(self, script: str, *args: Any) -> Any: ...

    def screenshot_as_png(self) -> bytes: ...

    def get(self, url: str) -> None: ...

    def refresh(self) -> None: ...

    def current_url(self) -> str: ...

    def title(self) -> str: ...

    def delete_all_cookies(self) -> None: ...

    def set_window_size(self, width: int, height: int) -> None: ...


InteractionTarget = Union[Locator, ElementHandle]
"""操作対象。Locator は遅延解決、要素ハンドルは解決済み。"""


# ---------------------------------------------------------------------------
# 解決ヘルパー
# ---------------------------------------------------------------------------

def resolve_target(driver: UiDriver, target: InteractionTarget) -> ElementHandle:
    """操作対象を要素ハンドルに解決する。

    Locator の場合は毎回 find_elements() で再検索し、最初の要素を返す。
    要素ハンドルの場合はそのまま返す（生存確認は呼び出し側の操作で行われる）。

    Raises:
        ElementNotFoundError: Locator に一致する要素がない場合
    """
    if isinstance(target, Locator):
        elements = driver.find_elements(target)
        if not elements:
            raise ElementNotFoundError(f"要素が見つかりません: {target.describe()}")
        return elements[0]
    return target

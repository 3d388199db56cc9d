"""
Playwright アダプタ — Playwright sync API の Page を UiDriver として扱う

テストスレッドごとに 1 つのブラウザセッションを保持する前提のため、
同期 API（playwright.sync_api）を使用する。ブラウザの起動・終了は行わず、
外部で生成された Page を受け取ってドライバ抽象に適合させる。

主な機能:
  - Locator の各 strategy を Playwright のロケータに変換
  - ElementHandle をラップした PlaywrightElement
  - Playwright のエラーを DriverError / StaleElementError に変換
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, Optional

from playwright.sync_api import Error as PlaywrightError

from .driver import DriverError, Locator, StaleElementError

if TYPE_CHECKING:
    from playwright.sync_api import ElementHandle as PwElementHandle
    from playwright.sync_api import Locator as PwLocator
    from playwright.sync_api import Page

logger = logging.getLogger(__name__)

# DOM から切り離された要素への操作を示すメッセージ
_DETACHED_PATTERN = re.compile(r"not attached|detached", re.IGNORECASE)


@contextmanager
def _translate_errors(description: str = "") -> Iterator[None]:
    """Playwright のエラーをドライバ抽象のエラーに変換する。"""
    try:
        yield
    except PlaywrightError as exc:
        message = str(exc)
        if _DETACHED_PATTERN.search(message):
            raise StaleElementError(f"要素が DOM から切り離されました: {description}") from exc
        raise DriverError(message) from exc


def _quote(value: str) -> str:
    """CSS 属性セレクタ用に値をエスケープする。"""
    return value.replace("\\", "\\\\").replace('"', '\\"')


# ---------------------------------------------------------------------------
# 要素ハンドル
# ---------------------------------------------------------------------------

class PlaywrightElement:
    """Playwright の ElementHandle を ElementHandle Protocol に適合させるラッパー。"""

    def __init__(
        self,
        handle: PwElementHandle,
        description: str = "",
        action_timeout_ms: float = 5000,
    ) -> None:
        self._handle = handle
        self._description = description
        self._action_timeout_ms = action_timeout_ms

    @property
    def raw(self) -> PwElementHandle:
        """ラップ対象の Playwright ElementHandle。"""
        return self._handle

    def describe(self) -> str:
        return self._description or repr(self._handle)

    def is_displayed(self) -> bool:
        with _translate_errors(self._description):
            return self._handle.is_visible()

    def is_enabled(self) -> bool:
        with _translate_errors(self._description):
            return self._handle.is_enabled()

    def size(self) -> tuple[float, float]:
        with _translate_errors(self._description):
            box = self._handle.bounding_box()
        if box is None:
            return (0.0, 0.0)
        return (float(box["width"]), float(box["height"]))

    def text(self) -> str:
        with _translate_errors(self._description):
            return self._handle.inner_text()

    def get_attribute(self, name: str) -> Optional[str]:
        with _translate_errors(self._description):
            return self._handle.get_attribute(name)

    def clear(self) -> None:
        with _translate_errors(self._description):
            self._handle.fill("", timeout=self._action_timeout_ms)

    def send_keys(self, text: str) -> None:
        with _translate_errors(self._description):
            self._handle.type(text, timeout=self._action_timeout_ms)

    def click(self) -> None:
        with _translate_errors(self._description):
            self._handle.click(timeout=self._action_timeout_ms)


# ---------------------------------------------------------------------------
# ドライバ
# ---------------------------------------------------------------------------

class PlaywrightDriver:
    """Playwright の Page を UiDriver Protocol に適合させるアダプタ。

    使用例::

        with sync_playwright() as pw:
            page = pw.chromium.launch(headless=True).new_page()
            driver = PlaywrightDriver(page)
            InteractionWrapper(driver).click(Locator.css("#login"))
    """

    def __init__(
        self,
        page: Page,
        action_timeout_ms: float = 5000,
        full_page_screenshot: bool = False,
    ) -> None:
        self._page = page
        self._action_timeout_ms = action_timeout_ms
        self._full_page_screenshot = full_page_screenshot

    @property
    def page(self) -> Page:
        return self._page

    # ----- 要素検索 -----

    def _locate(self, locator: Locator) -> PwLocator:
        strategy = locator.strategy
        selector = locator.selector
        if strategy == "css":
            return self._page.locator(f"css={selector}")
        if strategy == "xpath":
            return self._page.locator(f"xpath={selector}")
        if strategy == "id":
            return self._page.locator(f'[id="{_quote(selector)}"]')
        if strategy == "name":
            return self._page.locator(f'[name="{_quote(selector)}"]')
        if strategy == "text":
            return self._page.get_by_text(selector)
        if strategy == "test_id":
            return self._page.get_by_test_id(selector)
        if strategy == "role":
            return self._page.get_by_role(selector)
        if strategy == "label":
            return self._page.get_by_label(selector)
        if strategy == "placeholder":
            return self._page.get_by_placeholder(selector)
        raise DriverError(f"未対応の strategy です: {strategy}")

    def find_elements(self, locator: Locator) -> list[PlaywrightElement]:
        description = locator.describe()
        with _translate_errors(description):
            handles = self._locate(locator).element_handles()
        return [
            PlaywrightElement(h, description, self._action_timeout_ms) for h in handles
        ]

    # ----- スクリプト実行 -----

    def execute_script(self, script: str, *args: Any) -> Any:
        """関数式スクリプトを引数付きで評価する。

        PlaywrightElement 引数は ElementHandle に展開して渡す。
        """
        unwrapped = [a.raw if isinstance(a, PlaywrightElement) else a for a in args]
        with _translate_errors("execute_script"):
            return self._page.evaluate(f"(args) => ({script})(...args)", unwrapped)

    # ----- スクリーンショット -----

    def screenshot_as_png(self) -> bytes:
        with _translate_errors("screenshot"):
            return self._page.screenshot(type="png", full_page=self._full_page_screenshot)

    # ----- ナビゲーション -----

    def get(self, url: str) -> None:
        logger.info("goto: %s", url)
        with _translate_errors("goto"):
            self._page.goto(url)
            self._page.wait_for_load_state("domcontentloaded")

    def refresh(self) -> None:
        with _translate_errors("reload"):
            self._page.reload()

    def current_url(self) -> str:
        return self._page.url

    def title(self) -> str:
        with _translate_errors("title"):
            return self._page.title()

    # ----- Cookie / ウィンドウ -----

    def delete_all_cookies(self) -> None:
        with _translate_errors("clear_cookies"):
            self._page.context.clear_cookies()

    def set_window_size(self, width: int, height: int) -> None:
        with _translate_errors("set_viewport_size"):
            self._page.set_viewport_size({"width": width, "height": height})

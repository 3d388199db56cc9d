"""
テスト共通フィクスチャ・テストダブル定義

ブラウザを起動せずに待機・操作・レポートを検証するため、
UiDriver / ElementHandle を満たす手書きのフェイクを提供する。
execute_script() は flowguard.core.scripts の定数ごとに振る舞いを切り替える。
"""

from __future__ import annotations

from typing import Any, Optional

import pytest

from flowguard.core import scripts
from flowguard.core.driver import Locator, StaleElementError
from flowguard.core.waits import WaitEngine, WaitPolicy

pytest_plugins = ["pytester"]

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


# ---------------------------------------------------------------------------
# フェイク要素・ドライバ
# ---------------------------------------------------------------------------

class FakeElement:
    """ElementHandle を満たすフェイク要素。

    fail_* 属性に例外を設定すると、対応するネイティブ操作がその例外を送出する。
    detached を True にすると全操作が StaleElementError を送出する。
    """

    def __init__(
        self,
        name: str = "element",
        text: str = "",
        displayed: bool = True,
        enabled: bool = True,
        size: tuple[float, float] = (120.0, 24.0),
        attributes: Optional[dict[str, str]] = None,
        options: Optional[list[str]] = None,
        valid: bool = True,
        validation_message: str = "",
        group_html: str = "",
        obscured: bool = False,
    ) -> None:
        self.name = name
        self.text_value = text
        self.displayed = displayed
        self.enabled = enabled
        self.extent = size
        self.attributes = dict(attributes or {})
        self.options = list(options or [])
        self.valid = valid
        self.validation_message = validation_message
        self.group_html = group_html
        self.obscured = obscured
        self.detached = False

        self.value = ""
        self.clicks = 0
        self.js_clicks = 0
        self.scrolls = 0
        self.fail_click: Optional[Exception] = None
        self.fail_clear: Optional[Exception] = None
        self.fail_send_keys: Optional[Exception] = None
        self.fail_text: Optional[Exception] = None

    def describe(self) -> str:
        return f"fake:{self.name}"

    def _check(self) -> None:
        if self.detached:
            raise StaleElementError(f"detached: {self.name}")

    def is_displayed(self) -> bool:
        self._check()
        return self.displayed

    def is_enabled(self) -> bool:
        self._check()
        return self.enabled

    def size(self) -> tuple[float, float]:
        self._check()
        return self.extent

    def text(self) -> str:
        self._check()
        if self.fail_text is not None:
            raise self.fail_text
        return self.text_value

    def get_attribute(self, name: str) -> Optional[str]:
        self._check()
        return self.attributes.get(name)

    def clear(self) -> None:
        self._check()
        if self.fail_clear is not None:
            raise self.fail_clear
        self.value = ""

    def send_keys(self, text: str) -> None:
        self._check()
        if self.fail_send_keys is not None:
            raise self.fail_send_keys
        self.value += text

    def click(self) -> None:
        self._check()
        if self.fail_click is not None:
            raise self.fail_click
        self.clicks += 1


class FakeDriver:
    """UiDriver を満たすフェイクドライバ。

    Locator ごとに要素リストを保持し、execute_script() の呼び出しを記録する。
    script_errors にスクリプト定数 → 例外を設定すると、そのスクリプトが例外を送出する。
    """

    def __init__(self) -> None:
        self.elements: dict[Locator, list[FakeElement]] = {}
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.script_errors: dict[str, Exception] = {}
        self.ready = True
        self.title_text = ""
        self.url = "about:blank"
        self.screenshot: Any = PNG_BYTES
        self.refreshes = 0
        self.cookies_cleared = False
        self.window: Optional[tuple[int, int]] = None
        self.zoom = 100.0

    # ----- テスト用ヘルパー -----

    def add(self, locator: Locator, element: FakeElement) -> FakeElement:
        self.elements.setdefault(locator, []).append(element)
        return element

    def remove(self, locator: Locator) -> None:
        self.elements.pop(locator, None)

    def script_calls(self, script: str) -> int:
        return sum(1 for executed, _ in self.executed if executed == script)

    # ----- UiDriver -----

    def find_elements(self, locator: Locator) -> list[FakeElement]:
        return list(self.elements.get(locator, []))

    def execute_script(self, script: str, *args: Any) -> Any:
        self.executed.append((script, args))
        if script in self.script_errors:
            raise self.script_errors[script]
        element = args[0] if args and isinstance(args[0], FakeElement) else None
        if element is not None:
            element._check()

        if script == scripts.DOCUMENT_READY:
            return self.ready
        if script == scripts.SCROLL_INTO_VIEW:
            element.scrolls += 1
            return None
        if script == scripts.CLICK:
            element.js_clicks += 1
            return None
        if script == scripts.SET_VALUE:
            element.value = args[1]
            return None
        if script == scripts.INNER_TEXT:
            return element.text_value
        if script == scripts.IS_UNOBSCURED:
            return not element.obscured
        if script == scripts.OPTION_LABELS:
            return list(element.options)
        if script == scripts.CHECK_VALIDITY:
            return element.valid
        if script == scripts.VALIDATION_MESSAGE:
            return element.validation_message
        if script == scripts.CLOSEST_GROUP_HTML:
            return element.group_html
        if script == scripts.GET_ZOOM:
            return self.zoom
        if script == scripts.SET_ZOOM:
            self.zoom = float(args[0])
            return None
        return None

    def screenshot_as_png(self) -> bytes:
        if isinstance(self.screenshot, Exception):
            raise self.screenshot
        return self.screenshot

    def get(self, url: str) -> None:
        self.url = url

    def refresh(self) -> None:
        self.refreshes += 1

    def current_url(self) -> str:
        return self.url

    def title(self) -> str:
        return self.title_text

    def delete_all_cookies(self) -> None:
        self.cookies_cleared = True

    def set_window_size(self, width: int, height: int) -> None:
        self.window = (width, height)


class FakeClock:
    """単調時計と sleep のフェイク。sleep() は時刻を進めるだけで実際には待たない。"""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ---------------------------------------------------------------------------
# pytest フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def short_policy() -> WaitPolicy:
    """テスト用の待機ポリシー（2 秒 / 100ms）。"""
    return WaitPolicy(timeout=2.0, poll_interval=0.1)


@pytest.fixture
def wait_engine(fake_driver: FakeDriver, fake_clock: FakeClock, short_policy: WaitPolicy) -> WaitEngine:
    """フェイク時計で駆動する WaitEngine。タイムアウトしても実時間は消費しない。"""
    return WaitEngine(fake_driver, short_policy, clock=fake_clock, sleep=fake_clock.sleep)

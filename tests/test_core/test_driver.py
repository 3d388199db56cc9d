"""
ドライバ抽象と Playwright アダプタのユニットテスト

Playwright の Page / ElementHandle はモック（unittest.mock）を使用する。
実際のブラウザは起動しない。
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from playwright.sync_api import Error as PlaywrightError
from pydantic import ValidationError

from conftest import FakeDriver, FakeElement
from flowguard.core import scripts
from flowguard.core.driver import (
    DriverError,
    ElementNotFoundError,
    Locator,
    StaleElementError,
    TransientDriverError,
    UiDriver,
    resolve_target,
)
from flowguard.core.playwright_driver import PlaywrightDriver, PlaywrightElement


# ===========================================================================
# テスト: Locator
# ===========================================================================

class TestLocator:
    """Locator 値オブジェクト。"""

    def test_describe(self) -> None:
        assert Locator.css("#input-email").describe() == "css=#input-email"
        assert str(Locator.by_id("input-email")) == "id=input-email"

    def test_value_semantics(self) -> None:
        """同じ strategy / selector の Locator は等価でハッシュ可能であること。"""
        assert Locator.xpath("//a") == Locator(strategy="xpath", selector="//a")
        assert len({Locator.by_name("email"), Locator.by_name("email")}) == 1

    def test_serializable(self) -> None:
        assert Locator.by_test_id("submit").model_dump() == {"strategy": "test_id", "selector": "submit"}

    def test_blank_selector_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Locator.css("   ")

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Locator(strategy="link_text", selector="Login")  # type: ignore[arg-type]

    def test_frozen(self) -> None:
        locator = Locator.by_text("Continue")
        with pytest.raises(ValidationError):
            locator.selector = "Back"  # type: ignore[misc]


class TestResolveTarget:
    def test_locator_first_match(self, fake_driver: FakeDriver) -> None:
        first = fake_driver.add(Locator.css("a"), FakeElement("1"))
        fake_driver.add(Locator.css("a"), FakeElement("2"))
        assert resolve_target(fake_driver, Locator.css("a")) is first

    def test_locator_missing(self, fake_driver: FakeDriver) -> None:
        with pytest.raises(ElementNotFoundError):
            resolve_target(fake_driver, Locator.css("a"))

    def test_handle_passthrough(self, fake_driver: FakeDriver) -> None:
        element = FakeElement()
        assert resolve_target(fake_driver, element) is element

    def test_error_taxonomy(self) -> None:
        assert issubclass(StaleElementError, TransientDriverError)
        assert issubclass(ElementNotFoundError, TransientDriverError)
        assert issubclass(TransientDriverError, DriverError)

    def test_fake_driver_satisfies_protocol(self, fake_driver: FakeDriver) -> None:
        assert isinstance(fake_driver, UiDriver)


# ===========================================================================
# テスト: PlaywrightDriver
# ===========================================================================

def _make_page(handles: list | None = None) -> MagicMock:
    """element_handles() が handles を返すモック Page を生成する。"""
    page = MagicMock()
    locator = MagicMock()
    locator.element_handles.return_value = handles or []
    page.locator.return_value = locator
    page.get_by_text.return_value = locator
    page.get_by_test_id.return_value = locator
    page.get_by_role.return_value = locator
    page.get_by_label.return_value = locator
    page.get_by_placeholder.return_value = locator
    return page


class TestPlaywrightDriver:
    """Page をドライバ抽象に適合させるアダプタ。"""

    @pytest.mark.parametrize(
        ("locator", "expected"),
        [
            (Locator.css("#a"), "css=#a"),
            (Locator.xpath("//div"), "xpath=//div"),
            (Locator.by_id("input-email"), '[id="input-email"]'),
            (Locator.by_name('we"ird'), '[name="we\\"ird"]'),
        ],
    )
    def test_selector_strategies(self, locator: Locator, expected: str) -> None:
        page = _make_page()
        PlaywrightDriver(page).find_elements(locator)
        page.locator.assert_called_once_with(expected)

    def test_semantic_strategies(self) -> None:
        page = _make_page()
        driver = PlaywrightDriver(page)
        driver.find_elements(Locator.by_text("Continue"))
        driver.find_elements(Locator(strategy="role", selector="button"))
        driver.find_elements(Locator(strategy="placeholder", selector="E-Mail"))
        page.get_by_text.assert_called_once_with("Continue")
        page.get_by_role.assert_called_once_with("button")
        page.get_by_placeholder.assert_called_once_with("E-Mail")

    def test_find_elements_wraps_handles(self) -> None:
        raw = MagicMock()
        page = _make_page([raw])
        elements = PlaywrightDriver(page).find_elements(Locator.css("#a"))
        assert len(elements) == 1
        assert isinstance(elements[0], PlaywrightElement)
        assert elements[0].raw is raw
        assert elements[0].describe() == "css=#a"

    def test_execute_script_unwraps_elements(self) -> None:
        """要素引数は ElementHandle に展開して evaluate に渡すこと。"""
        page = _make_page()
        raw = MagicMock()
        driver = PlaywrightDriver(page)
        driver.execute_script(scripts.SET_VALUE, PlaywrightElement(raw), "abc")
        page.evaluate.assert_called_once_with(
            f"(args) => ({scripts.SET_VALUE})(...args)", [raw, "abc"],
        )

    def test_detached_error_translated(self) -> None:
        page = _make_page()
        page.locator.return_value.element_handles.side_effect = PlaywrightError(
            "Element is not attached to the DOM"
        )
        with pytest.raises(StaleElementError):
            PlaywrightDriver(page).find_elements(Locator.css("#a"))

    def test_other_error_translated(self) -> None:
        page = _make_page()
        page.evaluate.side_effect = PlaywrightError("Execution context was destroyed")
        with pytest.raises(DriverError) as excinfo:
            PlaywrightDriver(page).execute_script(scripts.DOCUMENT_READY)
        assert not isinstance(excinfo.value, StaleElementError)

    def test_screenshot(self) -> None:
        page = _make_page()
        page.screenshot.return_value = b"png"
        assert PlaywrightDriver(page, full_page_screenshot=True).screenshot_as_png() == b"png"
        page.screenshot.assert_called_once_with(type="png", full_page=True)

    def test_navigation(self) -> None:
        page = _make_page()
        page.url = "https://shop.local/account"
        page.title.return_value = "My Account"
        driver = PlaywrightDriver(page)

        driver.get("https://shop.local/login")
        driver.refresh()
        page.goto.assert_called_once_with("https://shop.local/login")
        page.wait_for_load_state.assert_called_once_with("domcontentloaded")
        page.reload.assert_called_once()
        assert driver.current_url() == "https://shop.local/account"
        assert driver.title() == "My Account"

    def test_cookies_and_window(self) -> None:
        page = _make_page()
        driver = PlaywrightDriver(page)
        driver.delete_all_cookies()
        driver.set_window_size(1280, 720)
        page.context.clear_cookies.assert_called_once()
        page.set_viewport_size.assert_called_once_with({"width": 1280, "height": 720})


class TestPlaywrightElement:
    """ElementHandle のラッパー。"""

    def test_size_without_box(self) -> None:
        """bounding_box が None（非表示）の場合はサイズ 0 になること。"""
        raw = MagicMock()
        raw.bounding_box.return_value = None
        assert PlaywrightElement(raw).size() == (0.0, 0.0)

    def test_size_from_box(self) -> None:
        raw = MagicMock()
        raw.bounding_box.return_value = {"x": 0, "y": 0, "width": 80, "height": 20}
        assert PlaywrightElement(raw).size() == (80.0, 20.0)

    def test_actions_use_timeout(self) -> None:
        raw = MagicMock()
        element = PlaywrightElement(raw, "css=#a", action_timeout_ms=1234)
        element.clear()
        element.send_keys("abc")
        element.click()
        raw.fill.assert_called_once_with("", timeout=1234)
        raw.type.assert_called_once_with("abc", timeout=1234)
        raw.click.assert_called_once_with(timeout=1234)

    def test_detached_click(self) -> None:
        raw = MagicMock()
        raw.click.side_effect = PlaywrightError("Element is detached from document")
        with pytest.raises(StaleElementError):
            PlaywrightElement(raw, "css=#a").click()

    def test_queries(self) -> None:
        raw = MagicMock()
        raw.is_visible.return_value = True
        raw.is_enabled.return_value = False
        raw.inner_text.return_value = "Login"
        raw.get_attribute.return_value = "email"
        element = PlaywrightElement(raw)
        assert element.is_displayed() is True
        assert element.is_enabled() is False
        assert element.text() == "Login"
        assert element.get_attribute("name") == "email"

from unittest.mock import MagicMock

import pytest
from playwright.sync_api import Error as PlaywrightError

from browser import (
    BrowserSession,
    BrowserUnavailable,
    NavigationError,
    PlaywrightElement,
    PlaywrightPage,
    StaticPage,
)
from conftest import VIDEO_URL, make_html


def test_static_page_reads():
    page = StaticPage(make_html(
        f'<video class="a b" src="{VIDEO_URL}"><source src="/x.mp4"></video>',
        head='<meta property="og:type" content="video.other">',
    ))

    video = page.query("video")
    assert video.attribute("src") == VIDEO_URL
    assert video.attribute("class") == "a b"
    assert video.attribute("data-src") is None
    assert [s.attribute("src") for s in video.query_all("source")] == ["/x.mp4"]
    assert video.evaluate("el => el.currentSrc") is None
    assert page.query('meta[property="og:type"][content^="video"]') is not None
    assert page.query("img") is None
    assert page.query_all("img") == []
    assert page.wait_for_elements("video", 10)
    assert not page.wait_for_elements("img", 10)


def test_static_page_returns_original_markup():
    html = '<html><body><script>{"a":"b\\/c\\u0026d"}</script></body></html>'
    assert StaticPage(html).html() == html


def test_playwright_page_swallows_probe_errors():
    raw = MagicMock()
    raw.query_selector.side_effect = PlaywrightError("Target closed")
    raw.query_selector_all.side_effect = PlaywrightError("Target closed")
    raw.content.side_effect = PlaywrightError("Target closed")
    raw.wait_for_load_state.side_effect = PlaywrightError("Timeout 15000ms exceeded")
    raw.wait_for_selector.side_effect = PlaywrightError("Timeout 5000ms exceeded")
    page = PlaywrightPage(raw)

    assert page.query("video") is None
    assert page.query_all("video") == []
    assert page.html() is None
    assert page.wait_for_load(15000) is False
    assert page.wait_for_elements("video", 5000) is False


def test_playwright_element_swallows_errors():
    handle = MagicMock()
    handle.get_attribute.side_effect = PlaywrightError("Element is not attached")
    handle.query_selector_all.side_effect = PlaywrightError("Element is not attached")
    handle.evaluate.side_effect = PlaywrightError("Execution context was destroyed")
    element = PlaywrightElement(handle)

    assert element.attribute("src") is None
    assert element.query_all("source") == []
    assert element.evaluate("el => el.currentSrc") is None


def test_playwright_element_evaluate_empty_is_none():
    handle = MagicMock()
    handle.evaluate.return_value = ""
    assert PlaywrightElement(handle).evaluate("el => el.currentSrc") is None
    handle.evaluate.return_value = VIDEO_URL
    assert PlaywrightElement(handle).evaluate("el => el.currentSrc") == VIDEO_URL


def test_playwright_navigation_error_is_raised():
    raw = MagicMock()
    raw.goto.side_effect = PlaywrightError("net::ERR_CONNECTION_REFUSED")
    with pytest.raises(NavigationError):
        PlaywrightPage(raw).navigate("https://www.threads.net/@a/post/b", 15000)


def make_session():
    return BrowserSession(user_agent="UA", viewport={"width": 1920, "height": 1080}, probe_timeout_ms=1234)


def test_open_page_requires_running_session():
    with pytest.raises(BrowserUnavailable):
        with make_session().open_page():
            pass


def test_open_page_configures_and_always_releases_context():
    session = make_session()
    browser = MagicMock()
    browser.is_connected.return_value = True
    session._browser = browser
    context = browser.new_context.return_value

    with pytest.raises(RuntimeError):
        with session.open_page() as page:
            assert isinstance(page, PlaywrightPage)
            raise RuntimeError("strategy blew up")

    browser.new_context.assert_called_once_with(
        user_agent="UA",
        viewport={"width": 1920, "height": 1080},
        device_scale_factor=1,
        is_mobile=False,
    )
    context.new_page.return_value.set_default_timeout.assert_called_once_with(1234)
    context.close.assert_called_once()

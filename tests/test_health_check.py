# tests/test_health_check.py
from types import SimpleNamespace

import pytest
from playwright.sync_api import Error as PWError, TimeoutError as PWTimeout

from propwatch import health_check, utils
from propwatch.health_check import PlaywrightHealthChecker, _parse_amount, evaluate_page
from propwatch.schemas import HealthCheckTarget

TARGET = HealthCheckTarget(id=1, source_url="https://portal-a.example/a-1", source="portal-a", price=120000)


def test_sold_marker_marks_inactive():
    html = "<html><body><h1>3-izbový byt</h1><div class='badge'>PREDANÉ</div></body></html>"
    result = evaluate_page(html, TARGET)
    assert result.is_active is False
    assert result.removal_reason == "sold"


def test_withdrawn_marker_marks_inactive():
    html = "<html><body><p>Inzerát bol vymazaný.</p></body></html>"
    result = evaluate_page(html, TARGET)
    assert result.is_active is False
    assert result.removal_reason == "withdrawn"


def test_structured_price_change_is_detected():
    html = '<html><head><meta itemprop="price" content="115000.00"></head><body>Byt</body></html>'
    result = evaluate_page(html, TARGET)
    assert result.is_active is True
    assert result.price_changed is True
    assert result.new_price == 115000


def test_text_price_equal_to_current_is_unchanged():
    html = "<html><body><span class='price'>120 000 €</span></body></html>"
    result = evaluate_page(html, TARGET)
    assert result.is_active is True
    assert result.price_changed is False
    assert result.new_price is None


def test_page_without_price_is_active_and_unchanged():
    result = evaluate_page("<html><body>Cena dohodou</body></html>", TARGET)
    assert result.is_active is True
    assert result.price_changed is False


@pytest.mark.parametrize("raw,expected", [
    ("119 500", 119500),
    ("119500.00", 119500),
    ("12", None),
    ("", None),
])
def test_parse_amount(raw, expected):
    assert _parse_amount(raw) == expected


def test_checker_requires_context_manager():
    with pytest.raises(RuntimeError):
        PlaywrightHealthChecker().check(TARGET)


class _Driver:
    def __init__(self, launch_error=None):
        self.launch_error = launch_error
        self.stopped = False
        self.chromium = self

    def launch(self, headless=True):
        raise self.launch_error

    def stop(self):
        self.stopped = True


def test_failed_browser_launch_stops_driver(monkeypatch):
    driver = _Driver(launch_error=PWError("Executable doesn't exist"))
    monkeypatch.setattr(health_check, "sync_playwright", lambda: SimpleNamespace(start=lambda: driver))
    checker = PlaywrightHealthChecker(headless=True)
    with pytest.raises(PWError):
        checker.__enter__()
    assert driver.stopped is True
    assert checker._pw is None


class _TimingOutPage:
    def __init__(self):
        self.calls = 0

    def goto(self, url, timeout=None, wait_until=None):
        self.calls += 1
        raise PWTimeout("Timeout 20000ms exceeded")


def test_navigation_timeout_is_not_retried(monkeypatch):
    monkeypatch.setattr(utils.time, "sleep", lambda s: None)
    checker = PlaywrightHealthChecker()
    checker._page = _TimingOutPage()
    result = checker.check(TARGET)
    assert result.error.startswith("timeout")
    assert checker._page.calls == 1

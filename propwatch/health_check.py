# propwatch/health_check.py
"""Health-check collaborator: is a listing still live on its source portal?

`HealthChecker` is the contract the refresh run depends on. The shipped
implementation drives headless Chromium through Playwright, one browser per
run, with a per-navigation timeout so a hung page degrades into an error
result instead of stalling the batch.
"""
import re
from typing import Optional, Protocol

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PWError, TimeoutError as PWTimeout, sync_playwright

from . import config
from .schemas import HealthCheckResult, HealthCheckTarget
from .utils import logger, normalize_text, retry

# try to detect available parser; prefer lxml if installed
try:
    import lxml  # type: ignore  # noqa: F401
    _bs_parser = "lxml"
except ImportError:
    _bs_parser = "html.parser"

SOLD_MARKERS = [
    r"\bpredane\b", r"\bpredany\b", r"\bsold\b", r"\buzavrete\b", r"nehnutelnost bola predana",
]
WITHDRAWN_MARKERS = [
    r"inzerat bol vymazany", r"inzerat neexistuje", r"inzerat uz nie je aktivny",
]
PRICE_SELECTORS = [
    "meta[property='product:price:amount']",
    "meta[itemprop='price']",
    "[itemprop='price']",
]
PRICE_PATTERN = re.compile(r"(\d[\d\s .]{3,})\s?(?:€|eur\b)", re.I)
MIN_SANE_PRICE = 1_000
MAX_SANE_PRICE = 50_000_000


class HealthChecker(Protocol):
    def check(self, target: HealthCheckTarget) -> HealthCheckResult: ...


def _parse_amount(raw) -> Optional[float]:
    raw = (raw or "").strip()
    # structured values may carry decimals ("119500.00")
    decimal = re.fullmatch(r"(\d+)[.,]\d{1,2}", raw)
    if decimal:
        raw = decimal.group(1)
    digits = re.sub(r"[^\d]", "", raw)
    if not digits:
        return None
    price = float(digits)
    if MIN_SANE_PRICE <= price <= MAX_SANE_PRICE:
        return price
    return None


def extract_price(soup: BeautifulSoup) -> Optional[float]:
    for selector in PRICE_SELECTORS:
        node = soup.select_one(selector)
        if node is None:
            continue
        price = _parse_amount(node.get("content") or node.get_text(" ", strip=True))
        if price:
            return price
    for match in PRICE_PATTERN.finditer(soup.get_text(" ", strip=True)):
        price = _parse_amount(match.group(1))
        if price:
            return price
    return None


def evaluate_page(html: str, target: HealthCheckTarget, response_code: int = 200) -> HealthCheckResult:
    """Turn a fetched listing page into a result."""
    soup = BeautifulSoup(html, _bs_parser)
    text = normalize_text(soup.get_text(" ", strip=True))
    if any(re.search(p, text) for p in SOLD_MARKERS):
        return HealthCheckResult(is_active=False, removal_reason="sold", response_code=response_code)
    if any(re.search(p, text) for p in WITHDRAWN_MARKERS):
        return HealthCheckResult(is_active=False, removal_reason="withdrawn", response_code=response_code)

    current = extract_price(soup)
    changed = current is not None and current != target.price
    return HealthCheckResult(
        is_active=True,
        price_changed=changed,
        new_price=current if changed else None,
        response_code=response_code,
    )


class PlaywrightHealthChecker:
    """Usable as a context manager so one browser serves a whole batch."""

    def __init__(self, timeout_seconds: float = None, headless: bool = None):
        self.timeout_ms = int((timeout_seconds or config.HEALTH_CHECK_TIMEOUT_SECONDS) * 1000)
        self.headless = config.HEADLESS if headless is None else headless
        self._pw = None
        self._browser = None
        self._page = None

    def __enter__(self):
        self._pw = sync_playwright().start()
        try:
            self._browser = self._pw.chromium.launch(headless=self.headless)
            context = self._browser.new_context(locale="sk-SK")
            self._page = context.new_page()
        except Exception:
            self.__exit__(None, None, None)
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if self._browser:
                self._browser.close()
        finally:
            if self._pw:
                self._pw.stop()
            self._pw = self._browser = self._page = None
        return False

    # timeouts are not retried
    @retry(PWError, tries=2, delay=1, giveup=(PWTimeout,))
    def _fetch(self, url):
        response = self._page.goto(url, timeout=self.timeout_ms, wait_until="domcontentloaded")
        return response, self._page.content()

    def check(self, target: HealthCheckTarget) -> HealthCheckResult:
        if self._page is None:
            raise RuntimeError("PlaywrightHealthChecker must be used as a context manager")
        if not target.source_url:
            return HealthCheckResult(error="No source URL")
        try:
            response, html = self._fetch(target.source_url)
        except PWTimeout as e:
            logger.warning("Timeout on %s: %s", target.source_url, e)
            return HealthCheckResult(error=f"timeout: {e}")
        except PWError as e:
            logger.warning("Browser error on %s: %s", target.source_url, e)
            return HealthCheckResult(error=str(e))

        status = response.status if response else None
        if status in (404, 410):
            return HealthCheckResult(is_active=False, removal_reason="unknown", response_code=status)
        if status and status >= 400:
            # might be temporary; never treated as delisting
            return HealthCheckResult(error=f"HTTP {status}", response_code=status)
        return evaluate_page(html, target, status or 200)

import asyncio
import itertools
import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from tapan_e2e.api.client import ApiClient
from tapan_e2e.browser.driver import BrowserDriver
from tapan_e2e.browser.locator_store import LocatorStore
from tapan_e2e.config.config import Settings
from tapan_e2e.runner.session import SessionContext

BASE_URL = "http://tapan.test"
TOKEN = "tok-e2e"
LOCATOR_FILE = Path(__file__).resolve().parent.parent / "storage" / "locators.json"
TESTCASE_DIR = Path(__file__).resolve().parent.parent / "testcase"

_INVOICE = re.compile(r"^/api/invoices/(?P<id>[\w-]+)(?P<rest>/payments|/logs|/signed-url)?$")
_BARCODE = re.compile(r"^/api/barcodes/(?P<id>[\w-]+)(?P<rest>/signed-url)?$")
_JOB = re.compile(r"^/api/jobs/(?P<id>[\w-]+)$")
_FILE = re.compile(r"^/files/(?P<id>[\w-]+)\.(?:pdf|png)$")
RATE_LIMIT_PATH = "/api/endpoint-to-test-rate-limit"


class FakeTapan:
    """In-memory stand-in for the Tapan Go REST surface."""

    def __init__(self, leaky=False, expires_in=60, rate_limit=10, rate_window=10):
        self.leaky = leaky
        self.expires_in = expires_in
        self.rate_limit = rate_limit
        self.rate_window = rate_window
        self.clock = 0.0
        self.invoices = {}
        self.barcodes = {}
        self.jobs = {}
        # status reads before a job settles, and how it settles
        self.job_polls = 2
        self.job_outcome = "completed"
        self.rate_hits = []
        self.logs = {}
        self.signed = {}
        self.requests = []
        self.deleted = []
        self.fail_delete = set()
        self.hang_delete = set()
        self._ids = itertools.count(1)
        self._created = datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def advance(self, seconds):
        self.clock += seconds

    def transport(self):
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method

        if path == "/api/auth/login" and method == "POST":
            body = json.loads(request.content)
            if body.get("password") != "secret":
                return httpx.Response(401, json={"error": "Invalid credentials"})
            return httpx.Response(200, json={"access_token": TOKEN, "user": {"email": body["email"]}})

        if path == RATE_LIMIT_PATH:
            return self._rate_limited()

        match = _FILE.match(path)
        if match:
            issued = self.signed.get(request.url.params.get("token"))
            if issued is None or self.clock - issued >= self.expires_in:
                return httpx.Response(403, json={"error": "Link expired"})
            return httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"})

        if request.headers.get("authorization") != f"Bearer {TOKEN}":
            if self.leaky and method == "GET":
                return httpx.Response(200, json={"data": list(self.invoices.values()) or [{"id": "leak"}]})
            return httpx.Response(401, json={"error": "Unauthorized"})

        if path == "/api/invoices":
            if method == "POST":
                return self._create(json.loads(request.content))
            return self._page(request)

        if path == "/api/invoices/queue" and method == "POST":
            return self._queue(json.loads(request.content))

        match = _INVOICE.match(path)
        if match:
            return await self._invoice(request, match.group("id"), match.group("rest"))

        if path == "/api/barcodes":
            if method == "POST":
                return self._create_barcode(json.loads(request.content))
            return httpx.Response(200, json={"data": list(self.barcodes.values())})

        match = _BARCODE.match(path)
        if match:
            return self._barcode(request, match.group("id"), match.group("rest"))

        match = _JOB.match(path)
        if match and method == "GET":
            return self._job(match.group("id"))

        if path.startswith("/api/"):
            return httpx.Response(200, json={"data": []})
        return httpx.Response(404, json={"error": "Not found"})

    def _sign(self, resource_id, extension):
        token = f"sig-{resource_id}-{len(self.signed)}"
        self.signed[token] = self.clock
        return httpx.Response(
            200,
            json={
                "signed_url": f"{BASE_URL}/files/{resource_id}.{extension}?token={token}",
                "expires_in": self.expires_in,
            },
        )

    def _create_barcode(self, body):
        if any(b["code"] == body.get("code") for b in self.barcodes.values()):
            return httpx.Response(409, json={"error": "Barcode already exists"})
        barcode_id = f"bc-{next(self._ids)}"
        barcode = dict(body, id=barcode_id)
        self.barcodes[barcode_id] = barcode
        return httpx.Response(201, json=barcode)

    def _barcode(self, request, barcode_id, rest):
        barcode = self.barcodes.get(barcode_id)
        if barcode is None:
            return httpx.Response(404, json={"error": "Barcode not found"})
        if rest == "/signed-url":
            return self._sign(barcode_id, "png")
        if request.method == "DELETE":
            del self.barcodes[barcode_id]
            self.deleted.append(barcode_id)
            return httpx.Response(204)
        return httpx.Response(200, json=barcode)

    def _queue(self, body):
        invoice_id = body.get("invoiceId")
        if not invoice_id:
            return httpx.Response(400, json={"error": "invoiceId is required"})
        if invoice_id not in self.invoices:
            return httpx.Response(404, json={"error": "Invoice not found"})
        job_id = f"job-{next(self._ids)}"
        self.jobs[job_id] = {"id": job_id, "invoiceId": invoice_id, "status": "queued", "reads": 0}
        return httpx.Response(
            200,
            json={
                "success": True,
                "jobId": job_id,
                "message": "Invoice PDF generation queued",
                "estimatedTime": "1-2 minutes",
            },
        )

    def _job(self, job_id):
        job = self.jobs.get(job_id)
        if job is None:
            return httpx.Response(404, json={"error": "Job not found"})
        job["reads"] += 1
        if job["reads"] > self.job_polls:
            job["status"] = self.job_outcome
        elif job["reads"] > 1:
            job["status"] = "active"
        return httpx.Response(200, json={k: v for k, v in job.items() if k != "reads"})

    def _rate_limited(self):
        self.rate_hits = [t for t in self.rate_hits if self.clock - t < self.rate_window]
        if self.rate_limit is not None and len(self.rate_hits) >= self.rate_limit:
            reset = self.rate_hits[0] + self.rate_window - self.clock
            return httpx.Response(
                429,
                json={"error": "Too many requests"},
                headers={"Retry-After": str(int(reset) + 1), "X-RateLimit-Limit": str(self.rate_limit)},
            )
        self.rate_hits.append(self.clock)
        return httpx.Response(200, json={"ok": True, "message": "Rate limit demo endpoint: request accepted"})

    def _create(self, body):
        number = next(self._ids)
        invoice_id = f"inv-{number}"
        created = self._created + timedelta(minutes=number)
        invoice = dict(body, id=invoice_id, createdAt=created.isoformat().replace("+00:00", "Z"))
        self.invoices[invoice_id] = invoice
        self.logs[invoice_id] = [{"event": "created", "amount": body.get("totalAmount")}]
        return httpx.Response(201, json=invoice)

    def _page(self, request):
        page = int(request.url.params.get("page", 1))
        size = int(request.url.params.get("pageSize", 20))
        ordered = sorted(self.invoices.values(), key=lambda i: i["createdAt"], reverse=True)
        chunk = ordered[(page - 1) * size:page * size]
        return httpx.Response(200, json={"data": chunk, "page": page, "total": len(ordered)})

    async def _invoice(self, request, invoice_id, rest):
        if invoice_id in self.hang_delete and request.method == "DELETE":
            await asyncio.sleep(30)
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            return httpx.Response(404, json={"error": "Invoice not found"})

        if rest is None and request.method == "GET":
            return httpx.Response(200, json=invoice)
        if rest is None and request.method == "DELETE":
            if invoice_id in self.fail_delete:
                return httpx.Response(500, json={"error": "boom"})
            del self.invoices[invoice_id]
            self.deleted.append(invoice_id)
            return httpx.Response(204)
        if rest == "/payments":
            amount = json.loads(request.content)["paymentAmount"]
            invoice["paidAmount"] = invoice.get("paidAmount", 0.0) + amount
            invoice["status"] = "paid" if invoice["paidAmount"] >= invoice["totalAmount"] else "partial"
            self.logs[invoice_id].append({"event": "partial_payment", "amount": amount})
            return httpx.Response(200, json=invoice)
        if rest == "/logs":
            return httpx.Response(200, json={"data": self.logs[invoice_id]})
        if rest == "/signed-url":
            return self._sign(invoice_id, "pdf")
        return httpx.Response(405)


class FakeElement:
    def __init__(self, text="", visible=True):
        self.text = text
        self.visible = visible
        self.value = None
        self.on_click = None


class FakeLocator:
    def __init__(self, page, key):
        self.page = page
        self.key = key

    @property
    def first(self):
        return self

    def _element(self, timeout):
        element = self.page.elements.get(self.key)
        if element is None or not element.visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {self.key}")
        return element

    async def fill(self, value, timeout=None):
        self._element(timeout).value = value

    async def click(self, timeout=None):
        element = self._element(timeout)
        self.page.clicks.append(self.key)
        if element.on_click:
            element.on_click(self.page)

    async def wait_for(self, state="visible", timeout=None):
        self._element(timeout)

    async def is_visible(self):
        element = self.page.elements.get(self.key)
        return element is not None and element.visible

    async def inner_text(self, timeout=None):
        return self._element(timeout).text


class FakeResponse:
    def __init__(self, status):
        self.status = status


class FakePage:
    """Just enough of a Playwright page: elements are keyed by ``engine=value``."""

    def __init__(self, elements=None, statuses=None):
        self.elements = dict(elements or {})
        self.statuses = dict(statuses or {})
        self.visited = []
        self.clicks = []

    async def goto(self, url, timeout=None, wait_until=None):
        self.visited.append(url)
        path = url.replace(BASE_URL, "") or "/"
        return FakeResponse(self.statuses.get(path, 200))

    def get_by_role(self, role, name=None, exact=False):
        return FakeLocator(self, f"role={role}[name={name}]" if name is not None else f"role={role}")

    def get_by_test_id(self, value):
        return FakeLocator(self, f"testid={value}")

    def get_by_text(self, value, exact=False):
        return FakeLocator(self, f"text={value}")

    def get_by_label(self, value, exact=False):
        return FakeLocator(self, f"label={value}")

    def get_by_placeholder(self, value, exact=False):
        return FakeLocator(self, f"placeholder={value}")

    def locator(self, selector):
        return FakeLocator(self, selector)


def tracking_page():
    def show_result(page):
        page.elements["testid=tracking-result"] = FakeElement(
            f"No shipment or barcode found for {page.elements['placeholder=Enter tracking number'].value}"
        )

    button = FakeElement("Track")
    button.on_click = show_result
    return FakePage(
        {
            "placeholder=Enter tracking number": FakeElement(),
            "role=button[name=Track]": button,
        }
    )


@pytest.fixture
def settings():
    return Settings(
        base_url=BASE_URL,
        login_email="qa@tapan.test",
        login_password="secret",
        step_timeout_ms=2_000,
        run_timeout_ms=10_000,
        teardown_timeout_ms=2_000,
        http_max_retries=2,
        http_retry_base_ms=1,
        testcase_dir=str(TESTCASE_DIR),
    )


@pytest.fixture
def app():
    return FakeTapan()


@pytest.fixture
def make_session(settings, app):
    def factory(scenario=None, page=None, **overrides):
        effective = settings.with_overrides(**overrides)
        store = LocatorStore(str(LOCATOR_FILE))

        async def open_browser():
            return BrowserDriver(page if page is not None else FakePage(), store=store)

        return SessionContext(
            effective,
            api=ApiClient(effective, transport=app.transport(), sleep=app.advance),
            browser_factory=open_browser,
            scenario=getattr(scenario, "name", ""),
            sleep=app.advance,
        )

    return factory

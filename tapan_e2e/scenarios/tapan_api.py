"""Scenarios against the Tapan Go REST surface and its public pages."""
import uuid
from dataclasses import replace

from tapan_e2e.errors import MISSING, AssertionFailed
from tapan_e2e.parser.dsl_models import PRE, Scenario
from tapan_e2e.retry import RetrySpec
from tapan_e2e.runner import actions, steps
from tapan_e2e.runner.assertions import (
    assert_disjoint,
    assert_protected,
    check_fields,
    items_of,
    one_of,
)
from tapan_e2e.scenarios.registry import registry

PAGE_SIZE = 5

# "api" limiter: 10 requests per 10 s window
RATE_LIMIT = 10
RATE_LIMIT_WINDOW_S = 10
RATE_LIMIT_PATH = "/api/endpoint-to-test-rate-limit"

JOB_FINAL_STATES = ("completed", "failed")
JOB_POLL = RetrySpec(interval_ms=2_000, max_duration_ms=120_000)

PROTECTED_COLLECTIONS = (
    "/api/invoices",
    "/api/manifests",
    "/api/scans",
    "/api/barcodes",
    "/api/shipments",
)

# Routes served by the app shell.
APP_ROUTES = (
    "/",
    "/warehouse",
    "/shipments",
    "/customers",
    "/invoices",
    "/rates",
    "/aircargo",
    "/barcodes",
    "/alerts",
    "/support",
    "/analytics",
    "/admin",
)


async def _new_customer(session):
    session.vars["customer_id"] = str(uuid.uuid4())


def _positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


async def _wait_past_expiry(session):
    await session.sleep(session.vars["expires_in"] + 5)


async def _check_signed_url_payload(session):
    check_fields(session.last_response.json_or_none(), {"signed_url": str, "expires_in": _positive_int})


def _create_invoice(total: float = 200.0, name: str = "create invoice"):
    body = {
        "customerId": "{customer_id}",
        "items": [{"description": "Test product", "quantity": 2, "unitPrice": total / 2}],
        "taxRate": 0.1,
        "status": "pending",
        "totalAmount": total,
        "paidAmount": 0.0,
    }
    return steps.request(
        "POST",
        "/api/invoices",
        body=body,
        expect_status=(201,),
        track=("invoices", "id"),
        save={"invoice_id": "id"},
        name=name,
        phase=PRE,
    )


@registry.register
def invoice_pagination() -> Scenario:
    seed = [_create_invoice(100.0 + i, name=f"seed invoice {i + 1}") for i in range(2 * PAGE_SIZE)]

    async def pages_disjoint(session):
        first = items_of(session.vars["page1"])
        second = items_of(session.vars["page2"])
        if not first or not second:
            raise AssertionFailed.mismatch("page sizes", "two non-empty pages", (len(first), len(second)))
        for number, page in (("1", first), ("2", second)):
            if len(page) > PAGE_SIZE:
                raise AssertionFailed.mismatch(f"page {number} size", f"<= {PAGE_SIZE}", len(page))
        assert_disjoint((i["id"] for i in first), (i["id"] for i in second), what="invoice ids")

    return Scenario(
        name="invoice_pagination",
        description="Pages 1 and 2 of the invoice list share no records and are newest first",
        steps=(
            steps.call("new customer", _new_customer, phase=PRE),
            *seed,
            steps.request("GET", f"/api/invoices?page=1&pageSize={PAGE_SIZE}", save={"page1": ""}, name="GET page 1"),
            steps.expect_order("createdAt", "desc"),
            steps.request("GET", f"/api/invoices?page=2&pageSize={PAGE_SIZE}", save={"page2": ""}, name="GET page 2"),
            steps.expect_order("createdAt", "desc"),
            steps.call("pages are disjoint", pages_disjoint),
        ),
    )


@registry.register
def partial_payment() -> Scenario:
    paid = {"paidAmount": 50.0, "status": one_of("partial", "pending")}

    async def single_audit_entry(session):
        logs = items_of(session.last_response.json_or_none())
        matching = [e for e in logs if e.get("event") == "partial_payment" and e.get("amount") == 50.0]
        if len(matching) != 1:
            raise AssertionFailed.mismatch(
                "logs[event=partial_payment, amount=50.0]", "exactly 1 entry", len(matching)
            )

    return Scenario(
        name="partial_payment",
        description="A 50.0 payment on a 200.0 invoice marks it partial and writes one audit entry",
        steps=(
            steps.call("new customer", _new_customer, phase=PRE),
            _create_invoice(200.0),
            steps.request(
                "POST",
                "/api/invoices/{invoice_id}/payments",
                body={"paymentAmount": 50.0},
                check=paid,
                name="post partial payment",
            ),
            steps.request("GET", "/api/invoices/{invoice_id}", check=paid, name="reload invoice"),
            steps.request("GET", "/api/invoices/{invoice_id}/logs", name="fetch audit log"),
            steps.call("one partial_payment audit entry", single_audit_entry),
        ),
    )


@registry.register
def signed_url_expiry() -> Scenario:
    """The signed PDF URL works right away and is refused once ``expires_in`` has passed."""
    return Scenario(
        name="signed_url_expiry",
        description="Signed invoice URLs return 200 immediately and 401/403/404 after expiry",
        steps=(
            steps.call("new customer", _new_customer, phase=PRE),
            _create_invoice(100.0),
            steps.request(
                "GET",
                "/api/invoices/{invoice_id}/signed-url",
                save={"signed_url": "signed_url", "expires_in": "expires_in"},
                name="issue signed url",
            ),
            steps.call("signed url payload", _check_signed_url_payload),
            steps.request("GET", "{signed_url}", authenticated=False, name="fetch before expiry"),
            steps.call("wait past expiry", _wait_past_expiry),
            steps.request(
                "GET",
                "{signed_url}",
                authenticated=False,
                expect_status=(401, 403, 404),
                name="fetch after expiry",
            ),
        ),
    )


@registry.register
def barcode_signed_url_expiry() -> Scenario:
    async def new_barcode_code(session):
        session.vars["barcode_code"] = f"TESTCODE{uuid.uuid4().hex[:8].upper()}"

    return Scenario(
        name="barcode_signed_url_expiry",
        description="Signed barcode URLs return 200 immediately and 401/403/404 after expiry",
        steps=(
            steps.call("new barcode code", new_barcode_code, phase=PRE),
            steps.request(
                "POST",
                "/api/barcodes",
                body={"code": "{barcode_code}", "description": "Test barcode for signed URL expiration"},
                expect_status=(201,),
                track=("barcodes", "id"),
                save={"barcode_id": "id"},
                name="create barcode",
                phase=PRE,
            ),
            steps.request(
                "GET",
                "/api/barcodes/{barcode_id}/signed-url",
                save={"signed_url": "signed_url", "expires_in": "expires_in"},
                name="issue signed url",
            ),
            steps.call("signed url payload", _check_signed_url_payload),
            steps.request("GET", "{signed_url}", authenticated=False, name="fetch before expiry"),
            steps.call("wait past expiry", _wait_past_expiry),
            steps.request(
                "GET",
                "{signed_url}",
                authenticated=False,
                expect_status=(401, 403, 404),
                name="fetch after expiry",
            ),
        ),
    )


@registry.register
def invoice_pdf_queue() -> Scenario:
    """Queue PDF generation for a fresh invoice and poll the job until it settles."""
    return Scenario(
        name="invoice_pdf_queue",
        description="A queued invoice PDF job reaches the completed state",
        steps=(
            steps.call("new customer", _new_customer, phase=PRE),
            _create_invoice(120.0),
            steps.request(
                "POST",
                "/api/invoices/queue",
                body={"invoiceId": "{invoice_id}"},
                expect_status=(200, 201, 202),
                check={"success": True},
                save={"job_id": "jobId"},
                name="queue pdf generation",
            ),
            steps.request(
                "GET",
                "/api/jobs/{job_id}",
                check={"status": one_of(*JOB_FINAL_STATES)},
                retry=JOB_POLL,
                name="wait for job to settle",
            ),
            steps.expect_json({"status": "completed", "id": "{job_id}"}),
        ),
    )


@registry.register
def api_rate_limit() -> Scenario:
    async def burst(session):
        statuses = []
        limited = None
        for _ in range(RATE_LIMIT + 5):
            response = await actions.http_request(
                session, "GET", RATE_LIMIT_PATH, authenticated=False, retry_rate_limit=False
            )
            statuses.append(response.status)
            if response.status == 429 and limited is None:
                limited = response
        if any(status not in (200, 429) for status in statuses):
            raise AssertionFailed.mismatch("burst statuses", "only 200 or 429", statuses)
        if statuses[0] != 200:
            raise AssertionFailed.mismatch("burst statuses.0", 200, statuses[0])
        if limited is None:
            raise AssertionFailed.mismatch("burst statuses", f"a 429 within {len(statuses)} requests", statuses)
        if "retry-after" not in limited.headers:
            raise AssertionFailed.mismatch("429 headers.retry-after", "present", MISSING)

    async def wait_for_window(session):
        await session.sleep(RATE_LIMIT_WINDOW_S + 1)

    return Scenario(
        name="api_rate_limit",
        description="A burst past the api limit is answered 429 with Retry-After and recovers after the window",
        steps=(
            steps.call("burst past the limit", burst),
            steps.call("wait for the limit window", wait_for_window),
            steps.request(
                "GET",
                RATE_LIMIT_PATH,
                authenticated=False,
                retry_rate_limit=False,
                check={"ok": True},
                name="request after the window",
            ),
        ),
    )


@registry.register
def unauthenticated_access() -> Scenario:
    def refused(response, session):
        assert_protected(response)

    checks = [
        replace(
            steps.request("GET", path, authenticated=False, expect_status=None, name=f"GET {path} without credentials"),
            expect=refused,
        )
        for path in PROTECTED_COLLECTIONS
    ]
    return Scenario(
        name="unauthenticated_access",
        description="Protected collections never return data to anonymous callers",
        steps=tuple(checks),
    )


@registry.register
def route_smoke() -> Scenario:
    return Scenario(
        name="route_smoke",
        description="Every app route renders without an HTTP error",
        steps=tuple(steps.navigate(path, expect_ok=True) for path in APP_ROUTES),
    )

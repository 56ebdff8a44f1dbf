#!/usr/bin/env python3
"""
PaySim Portal
Server-rendered front end for the payment simulator:
- Sign in / sign up against the backend's auth API
- Dashboard of the user's balance and recent payments
- Payment initiation with live settlement updates
- Payment status lookup with fixed-interval polling
- Support queries
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError

from common.backend import AuthSession, BackendClient, BackendError
from common.error_handling import BusinessLogicError, ErrorCodes, ServiceError, add_error_handlers
from common.realtime import ChangeFeed
from common.schemas import ISSUE_TYPES, NewPayment, Payment, SupportQuery, normalize_status
from common.security import mint_session_token, read_session
from common.settings import settings
from common.tracing import request_filter
from portal_service import views
from portal_service.polling import (
    NOT_FOUND_MESSAGE,
    fetch_profile,
    fetch_status,
    poll_payment_status,
)

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

app = FastAPI(title="PaySim Portal", version="1.0.0")
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
app.middleware("http")(request_filter)

templates = Jinja2Templates(directory=BASE_DIR / "templates")
templates.env.filters["money"] = views.format_money
templates.env.filters["time_ago"] = views.time_ago
templates.env.filters["short_id"] = views.short_id
templates.env.globals["status_config"] = views.status_config

SSE_KEEPALIVE_SECONDS = 15.0

# ---------------------------------------------------------------------------
#  Dependencies
# ---------------------------------------------------------------------------

_backend = BackendClient()

def get_backend() -> BackendClient:
    return _backend

def get_change_feed():
    """Factory building a change feed for a given client"""
    return ChangeFeed

class Viewer:
    """The signed-in user and a backend client acting on their behalf"""
    def __init__(self, user, client: BackendClient):
        self.user = user
        self.client = client

def session_claims(request: Request) -> Optional[dict]:
    return read_session(request.cookies.get(settings.session_cookie_name))

def client_for(request: Request, backend: BackendClient) -> BackendClient:
    claims = session_claims(request)
    return backend.with_token(claims["bat"]) if claims else backend

def get_viewer(request: Request, backend: BackendClient = Depends(get_backend)) -> Optional[Viewer]:
    claims = session_claims(request)
    if not claims:
        return None
    user = backend.auth.get_user(claims["bat"])
    if user is None:
        return None
    return Viewer(user, backend.with_token(claims["bat"]))

# ---------------------------------------------------------------------------
#  Rendering helpers
# ---------------------------------------------------------------------------

def render(request: Request, name: str, status_code: int = 200, **context) -> HTMLResponse:
    context.setdefault("nav", views.nav_links(request.url.path))
    return templates.TemplateResponse(request, name, context, status_code=status_code)

def render_error(request: Request, status_code: int, code: str, message: str) -> HTMLResponse:
    return render(request, "error.html", status_code=status_code, code=code, message=message)

add_error_handlers(app, html_renderer=render_error)

def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)

def start_session(response: RedirectResponse, session: AuthSession) -> RedirectResponse:
    token = mint_session_token(
        session.user.id,
        session.access_token,
        {"email": session.user.email},
    )
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
    )
    return response

def sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"

# ---------------------------------------------------------------------------
#  Auth screens
# ---------------------------------------------------------------------------

@app.get("/")
def index(request: Request):
    return redirect("/dashboard" if session_claims(request) else "/signin")

@app.get("/signin", response_class=HTMLResponse)
def signin_page(request: Request, created: bool = False):
    if session_claims(request):
        return redirect("/dashboard")
    return render(request, "signin.html", email="", error=None, created=created)

@app.post("/signin")
def signin(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    backend: BackendClient = Depends(get_backend),
):
    email = email.strip()
    if not email or not password:
        return render(request, "signin.html", status_code=400, email=email, error="Enter email & password")
    try:
        session = backend.auth.sign_in_with_password(email, password)
    except BackendError as e:
        logger.warning(f"Sign-in failed for {email}: {e.message}")
        return render(request, "signin.html", status_code=400, email=email, error=e.message)

    logger.info(f"Logged in user: {session.user.id}")
    return start_session(redirect("/dashboard"), session)

@app.get("/signup", response_class=HTMLResponse)
def signup_page(request: Request):
    return render(request, "signup.html", email="", error=None)

@app.post("/signup")
def signup(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    backend: BackendClient = Depends(get_backend),
):
    email = email.strip()
    if not email or not password:
        return render(request, "signup.html", status_code=400, email=email, error="Enter email & password")
    try:
        user, session = backend.auth.sign_up(email, password)
    except BackendError as e:
        return render(request, "signup.html", status_code=400, email=email, error=e.message)

    logger.info(f"User created: {user.id}")
    if session is None:
        # Email confirmation pending; nothing to sign in with yet
        return redirect("/signin?created=1")
    return start_session(redirect("/dashboard?created=1"), session)

@app.post("/signout")
def signout(request: Request, backend: BackendClient = Depends(get_backend)):
    claims = session_claims(request)
    if claims:
        backend.auth.sign_out(claims["bat"])
        logger.info(f"Signed out user: {claims['sub']}")
    response = redirect("/signin")
    response.delete_cookie(settings.session_cookie_name)
    return response

# ---------------------------------------------------------------------------
#  Dashboard
# ---------------------------------------------------------------------------

@app.get("/dashboard", response_class=HTMLResponse)
def dashboard(
    request: Request,
    tab: str = "all",
    status: str = "all",
    created: bool = False,
    viewer: Optional[Viewer] = Depends(get_viewer),
):
    if viewer is None:
        return redirect("/signin")
    if tab not in views.TABS:
        tab = "all"
    if status not in views.STATUS_FILTERS:
        status = "all"

    profile = fetch_profile(viewer.client, viewer.user.id)
    if profile is None:
        raise BusinessLogicError(ErrorCodes.PROFILE_NOT_FOUND, "Profile not found for this account.")

    rows = (
        viewer.client.table("payments")
        .select("*")
        .or_(views.payments_filter_expression(profile))
        .order("created_at", ascending=False)
        .limit(settings.dashboard_payment_limit)
        .execute()
    )
    payments = [Payment(**row) for row in rows]

    return render(
        request,
        "dashboard.html",
        profile=profile,
        stats=views.dashboard_stats(payments, profile),
        payments=views.filter_payments(payments, profile, tab, status),
        tab=tab,
        status=status,
        tabs=views.TABS,
        is_sent=views.is_sent,
        created=created,
    )

# ---------------------------------------------------------------------------
#  Payments
# ---------------------------------------------------------------------------

@app.get("/payment", response_class=HTMLResponse)
def payment_page(request: Request):
    return render(request, "payment.html", receiver_account_id="", amount="", error=None)

@app.post("/payment")
def create_payment(
    request: Request,
    receiver_account_id: str = Form(""),
    amount: str = Form(""),
    viewer: Optional[Viewer] = Depends(get_viewer),
):
    receiver_account_id = receiver_account_id.strip()
    amount = amount.strip()

    def form_error(message: str, status_code: int = 400):
        return render(
            request,
            "payment.html",
            status_code=status_code,
            receiver_account_id=receiver_account_id,
            amount=amount,
            error=message,
        )

    if not receiver_account_id or not amount:
        return form_error("Please fill in all fields")
    if viewer is None:
        return form_error("No session", 401)

    receiver = (
        viewer.client.table("profiles")
        .select("id, account_id")
        .eq("account_id", receiver_account_id)
        .maybe_single()
    )
    if not receiver:
        return form_error("Receiver not found. Please check the Account ID.", 404)

    try:
        new_payment = NewPayment(
            sender_id=viewer.user.id,
            receiver_id=receiver["account_id"],
            amount=amount,
        )
    except ValidationError:
        return form_error("Amount must be a positive number")

    try:
        created = viewer.client.table("payments").insert(new_payment.model_dump())
    except BackendError as e:
        return form_error(e.message)
    if not created:
        return form_error("Payment could not be created")

    payment_id = created[0]["id"]
    logger.info(f"Payment {payment_id} created", extra={
        "sender_id": new_payment.sender_id,
        "receiver_id": new_payment.receiver_id,
        "amount": new_payment.amount,
    })
    return redirect(f"/payment/{payment_id}")

@app.get("/payment/{payment_id}", response_class=HTMLResponse)
def payment_progress(
    request: Request,
    payment_id: str,
    backend: BackendClient = Depends(get_backend),
):
    result = fetch_status(client_for(request, backend), payment_id)
    if result is None:
        raise BusinessLogicError(ErrorCodes.PAYMENT_NOT_FOUND, NOT_FOUND_MESSAGE)
    return render(request, "payment_progress.html", result=result)

@app.get("/api/payments/{payment_id}/events")
async def payment_events(
    request: Request,
    payment_id: str,
    backend: BackendClient = Depends(get_backend),
    feed_factory=Depends(get_change_feed),
):
    """SSE stream of status changes for one payment, pushed by the change feed"""
    client = client_for(request, backend)
    payment_id = payment_id.strip()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_change(change: dict):
        loop.call_soon_threadsafe(queue.put_nowait, change)

    async def stream():
        subscription = None
        try:
            feed = feed_factory(client)
            subscription = await asyncio.to_thread(
                feed.subscribe, "payments", on_change, f"id=eq.{payment_id}", "UPDATE"
            )
            current = await asyncio.to_thread(fetch_status, client, payment_id)
            if current is None:
                yield sse("error", {"message": NOT_FOUND_MESSAGE})
                return
            yield sse("status", {"status": current.status.value})
            if current.status.is_terminal:
                return
            while not await request.is_disconnected():
                try:
                    change = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                status = normalize_status(change["new"].get("status"))
                yield sse("status", {"status": status.value})
                if status.is_terminal:
                    return
        except BackendError as e:
            # Rejected ids read the same as unknown ones
            logger.info(f"Subscription for payment {payment_id!r} rejected: {e.message}")
            yield sse("error", {"message": NOT_FOUND_MESSAGE})
        except ServiceError as e:
            logger.warning(f"Subscription for payment {payment_id!r} failed: {e.message}")
            yield sse("error", {"message": e.message})
        finally:
            if subscription is not None:
                await asyncio.to_thread(subscription.unsubscribe)

    return StreamingResponse(stream(), media_type="text/event-stream")

# ---------------------------------------------------------------------------
#  Status lookup
# ---------------------------------------------------------------------------

@app.get("/check-status", response_class=HTMLResponse)
def check_status(
    request: Request,
    payment_id: Optional[str] = None,
    backend: BackendClient = Depends(get_backend),
    viewer: Optional[Viewer] = Depends(get_viewer),
):
    context = {"payment_id": payment_id or "", "result": None, "error": None, "profile": None}
    if payment_id is None:
        return render(request, "check_status.html", **context)

    payment_id = payment_id.strip()
    context["payment_id"] = payment_id
    if not payment_id:
        context["error"] = "Please enter a Payment ID."
        return render(request, "check_status.html", status_code=400, **context)

    client = viewer.client if viewer else backend
    if viewer:
        context["profile"] = fetch_profile(client, viewer.user.id)

    result = fetch_status(client, payment_id)
    if result is None:
        context["error"] = NOT_FOUND_MESSAGE
        return render(request, "check_status.html", status_code=404, **context)

    context.update(
        result=result,
        is_sent=views.is_sent(result, context["profile"]),
        is_received=views.is_received(result, context["profile"]),
        max_attempts=settings.poll_max_attempts,
    )
    return render(request, "check_status.html", **context)

@app.get("/api/payments/{payment_id}")
def payment_status(
    request: Request,
    payment_id: str,
    backend: BackendClient = Depends(get_backend),
):
    result = fetch_status(client_for(request, backend), payment_id.strip())
    if result is None:
        raise BusinessLogicError(ErrorCodes.PAYMENT_NOT_FOUND, NOT_FOUND_MESSAGE, field="payment_id")
    return JSONResponse(result.model_dump(mode="json"))

@app.get("/api/payments/{payment_id}/poll")
async def payment_poll(
    request: Request,
    payment_id: str,
    backend: BackendClient = Depends(get_backend),
):
    """SSE stream of the polling loop; closing the page cancels the timer"""
    client = client_for(request, backend)

    async def fetch(pid: str):
        return await asyncio.to_thread(fetch_status, client, pid)

    async def stream():
        updates = poll_payment_status(fetch, payment_id.strip())
        try:
            async for update in updates:
                yield sse("poll", update.to_json())
                if update.done or await request.is_disconnected():
                    break
        finally:
            await updates.aclose()

    return StreamingResponse(stream(), media_type="text/event-stream")

# ---------------------------------------------------------------------------
#  Support
# ---------------------------------------------------------------------------

def _support_context(**overrides):
    context = {
        "issue_types": ISSUE_TYPES,
        "issue_type": ISSUE_TYPES[0],
        "message": "",
        "contact_number": "",
        "contact_email": "",
        "error": None,
        "success": None,
    }
    context.update(overrides)
    return context

@app.get("/support", response_class=HTMLResponse)
def support_page(request: Request, viewer: Optional[Viewer] = Depends(get_viewer)):
    if viewer is None:
        return redirect("/signin")
    return render(request, "support.html", **_support_context())

@app.post("/support")
def submit_support(
    request: Request,
    issue_type: str = Form(ISSUE_TYPES[0]),
    message: str = Form(""),
    contact_number: str = Form(""),
    contact_email: str = Form(""),
    viewer: Optional[Viewer] = Depends(get_viewer),
):
    if viewer is None:
        return redirect("/signin")

    entered = dict(
        issue_type=issue_type,
        message=message,
        contact_number=contact_number,
        contact_email=contact_email,
    )
    try:
        query = SupportQuery(user_id=viewer.user.id, **entered)
    except ValidationError as e:
        field = ".".join(str(loc) for loc in e.errors()[0].get("loc", []))
        return render(
            request,
            "support.html",
            status_code=400,
            **_support_context(**entered, error=f"Please check the {field.replace('_', ' ')} field."),
        )

    try:
        viewer.client.table("support_queries").insert(query.model_dump())
    except BackendError as e:
        return render(request, "support.html", status_code=400, **_support_context(**entered, error=e.message))

    logger.info(f"Support query from {viewer.user.id}: {query.issue_type}")
    return render(request, "support.html", **_support_context(success="Query submitted successfully!"))

@app.get("/health")
async def health():
    return {"ok": True, "service": "portal"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

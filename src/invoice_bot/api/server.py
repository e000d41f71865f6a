"""HTTP API: streamed chat, interaction progress, QuickBooks connection, and invoice CRUD."""

from __future__ import annotations

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from pydantic import BaseModel

from invoice_bot.ai.handler import ChatRequest
from invoice_bot.ai.tools.invoices import LineItemParams
from invoice_bot.app import InvoiceBotApp
from invoice_bot.core.types import InvoiceStatus
from invoice_bot.errors import IntegrationError, InvalidArgumentError, InvoiceBotError, error_envelope
from invoice_bot.log import get_logger
from invoice_bot.services.data_source import Sourced
from invoice_bot.storage.models import Invoice, InvoiceChanges, InvoiceDraft

logger = get_logger(__name__)

INTERACTION_HEADER = "X-Interaction-Id"

router = APIRouter()


class InvoiceCreateBody(BaseModel):
    # All optional: the route answers a missing field with a plain 400 body.
    customer: Optional[str] = None
    amount: Optional[Decimal] = None
    status: Optional[InvoiceStatus] = None
    items: Optional[list[LineItemParams]] = None


class InvoiceUpdateBody(BaseModel):
    status: Optional[InvoiceStatus] = None
    amount: Optional[Decimal] = None
    items: Optional[list[LineItemParams]] = None


def get_bot(request: Request) -> InvoiceBotApp:
    """Dependency to get the application from app.state."""
    return request.app.state.bot


@router.post("/api/chat")
async def chat(body: ChatRequest, bot: InvoiceBotApp = Depends(get_bot)):
    session = await bot.chat_handler.start(body)
    return StreamingResponse(
        session.body(),
        media_type="text/plain; charset=utf-8",
        headers={
            INTERACTION_HEADER: session.interaction_id,
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/api/chat/progress/{interaction_id}")
async def chat_progress(interaction_id: str, bot: InvoiceBotApp = Depends(get_bot)):
    interaction = bot.interactions.get(interaction_id)
    if interaction is None:
        return JSONResponse(status_code=404, content={"error": "Interaction not found"})
    return interaction.progress()


@router.get("/api/quickbooks/auth")
async def quickbooks_auth(bot: InvoiceBotApp = Depends(get_bot)):
    if not bot.config.quickbooks.is_configured:
        return JSONResponse(
            status_code=500,
            content={
                "error": "QuickBooks is not configured",
                "message": "Set QUICKBOOKS_CLIENT_ID and QUICKBOOKS_CLIENT_SECRET to enable the integration.",
            },
        )
    return {"authUrl": bot.credentials.authorization_url()}


@router.get("/callback")
async def quickbooks_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    realm_id: Optional[str] = Query(default=None, alias="realmId"),
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    bot: InvoiceBotApp = Depends(get_bot),
):
    frontend = bot.config.quickbooks.frontend_url.rstrip("/")

    def _failed(reason: str, description: str) -> RedirectResponse:
        logger.warning("quickbooks_callback_failed", error=reason, description=description)
        query = urlencode({"error": reason, "description": description})
        return RedirectResponse(f"{frontend}/?{query}")

    if error:
        return _failed(error, error_description or "")
    if not code:
        return _failed("missing_code", "No authorization code was returned")

    try:
        await bot.credentials.exchange_code(code, realm_id)
    except IntegrationError as e:
        return _failed("token_exchange_failed", e.message)
    return RedirectResponse(f"{frontend}/?connected=true")


@router.get("/api/quickbooks/status")
async def quickbooks_status(bot: InvoiceBotApp = Depends(get_bot)):
    authenticated = bot.credentials.is_authenticated()
    status: dict = {"authenticated": authenticated}
    if authenticated:
        status["realmId"] = bot.credentials.credentials.realm_id
    return status


@router.post("/api/quickbooks/disconnect")
async def quickbooks_disconnect(bot: InvoiceBotApp = Depends(get_bot)):
    bot.credentials.disconnect()
    return {"success": True}


@router.get("/api/invoices")
async def list_invoices(bot: InvoiceBotApp = Depends(get_bot)):
    listed = await bot.resolver.list_invoices()
    return {
        "invoices": [inv.to_dict() for inv in listed.value],
        "dataSource": listed.data_source.value,
    }


@router.post("/api/invoices")
async def create_invoice(body: InvoiceCreateBody, bot: InvoiceBotApp = Depends(get_bot)):
    if not body.customer or not body.amount or body.status is None:
        return JSONResponse(status_code=400, content={"error": "Missing required fields"})
    draft = InvoiceDraft(
        customer=body.customer,
        amount=body.amount,
        status=body.status,
        items=tuple(item.to_model() for item in body.items or ()),
    )
    created = await bot.resolver.create_invoice(draft)
    logger.info("invoice_created", invoice_id=created.value.id, data_source=created.data_source.value)
    return JSONResponse(status_code=201, content=_sourced_invoice(created))


@router.get("/api/invoices/{invoice_id}")
async def get_invoice(invoice_id: str, bot: InvoiceBotApp = Depends(get_bot)):
    found = await bot.resolver.get_invoice(invoice_id)
    if found.value is None:
        return JSONResponse(status_code=404, content={"error": "Invoice not found"})
    return _sourced_invoice(found)


@router.put("/api/invoices/{invoice_id}")
async def update_invoice(invoice_id: str, body: InvoiceUpdateBody, bot: InvoiceBotApp = Depends(get_bot)):
    changes = InvoiceChanges(
        status=body.status,
        amount=body.amount,
        items=tuple(item.to_model() for item in body.items) if body.items is not None else None,
    )
    if changes.is_empty():
        updated = await bot.resolver.get_invoice(invoice_id)
    else:
        updated = await bot.resolver.update_invoice(invoice_id, changes)
    if updated.value is None:
        return JSONResponse(status_code=404, content={"error": "Invoice not found"})
    return _sourced_invoice(updated)


def _sourced_invoice(sourced: Sourced[Invoice]) -> dict:
    return {**sourced.value.to_dict(), "dataSource": sourced.data_source.value}


@router.get("/api/test")
async def test():
    return {"message": "Server is running!"}


async def _invoice_bot_error_handler(request: Request, exc: InvoiceBotError) -> JSONResponse:
    status, content = error_envelope(exc)
    logger.warning("request_failed", path=request.url.path, code=exc.kind.value, error=exc.message)
    return JSONResponse(status_code=status, content=content)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err["loc"] if p != "body") or "body" for err in exc.errors()]
    return await _invoice_bot_error_handler(
        request, InvalidArgumentError(f"Invalid request: {', '.join(fields)}", fields)
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path)
    status, content = error_envelope(exc)
    return JSONResponse(status_code=status, content=content)


def create_app(bot: InvoiceBotApp) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await bot.start()
        yield
        await bot.stop()

    app = FastAPI(title="invoice-bot", lifespan=lifespan)
    app.state.bot = bot
    app.add_middleware(
        CORSMiddleware,
        allow_origins=bot.config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[INTERACTION_HEADER],
    )
    app.add_exception_handler(InvoiceBotError, _invoice_bot_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(router)
    return app

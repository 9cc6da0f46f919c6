import html
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import Response

from .config import Settings, get_settings
from .db import ensure_schema, get_engine, recent_mails
from .dispatcher import MailDispatcher
from .logging_setup import setup_logging
from .metrics import API_REQS, content_type, render_prometheus
from .request_context import RequestContext

logger = logging.getLogger(__name__)


class MailIn(BaseModel):
    to: str = Field(..., min_length=3, max_length=320)
    subject: str
    body: str


class ContactIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    message: str = Field(..., min_length=1)


def contact_team_body(name: str, email: str, message: str) -> str:
    return (
        f"<h3>Name</h3><p>{html.escape(name)}</p>"
        f"<h3>Email</h3><p>{html.escape(email)}</p>"
        f"<h3>Message</h3><p>{html.escape(message)}</p>"
    )


def contact_confirmation_body(name: str, message: str) -> str:
    return (
        f"<p>Hi {html.escape(name)},</p>"
        "<p>Thank you for your message!</p>"
        "<p>You wrote:</p>"
        f"<p>{html.escape(message)}</p>"
        "<p>We will contact you as soon as possible.</p>"
        "<p>Regards,</p>"
        "<p>The Clothing Loop team</p>"
    )


# ---------- Dependencies ----------
def get_dispatcher(request: Request) -> MailDispatcher:
    return request.app.state.dispatcher

def get_db(request: Request) -> Engine:
    return request.app.state.engine

def mail_context(request: Request) -> RequestContext:
    ctx = RequestContext()
    request.state.mail_ctx = ctx
    return ctx

def require_api_key(request: Request, x_api_key: Optional[str] = Header(default=None)):
    api_key = request.app.state.settings.api_key
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    dispatcher: Optional[MailDispatcher] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the API. Nothing is read from the environment until this is called:

        uvicorn --factory loopmail.api:create_app
    """
    settings = settings or get_settings()
    engine = engine or get_engine(settings.database_url)
    dispatcher = dispatcher or MailDispatcher.from_settings(settings, engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_logging(
                app="loopmail",
                environment=settings.env,
                level=settings.log_level,
                filename=settings.log_file,
                use_stream=True,
                stream_json=True,
            )
        ensure_schema(engine)
        logger.info(
            "[api] SMTP %s (%s), production=%s",
            dispatcher.session.addr, dispatcher.session.transport, dispatcher.production,
        )
        yield

    app = FastAPI(title="Loop Mail API", version="1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.dispatcher = dispatcher

    origins = settings.cors_allow_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def mail_errors_middleware(request: Request, call_next):
        resp = await call_next(request)
        API_REQS.labels(endpoint=request.url.path).inc()
        ctx = getattr(request.state, "mail_ctx", None)
        if ctx is not None and ctx.aborted:
            # the dispatcher already logged the failure
            logger.debug("[api] %s %s aborted: %r", request.method, request.url.path, ctx.errors)
            return JSONResponse(status_code=ctx.abort.status_code, content={"detail": ctx.abort.message})
        return resp

    @app.get("/metrics")
    def metrics():
        return Response(render_prometheus(), media_type=content_type())

    @app.get("/")
    def root():
        return {"name": "Loop Mail API", "docs": "/docs", "health": "/health"}

    @app.get("/health")
    def health(db: Engine = Depends(get_db)):
        try:
            with db.connect() as conn:
                conn.execute(text("SELECT 1"))
            db_ok = True
        except SQLAlchemyError:
            logger.exception("[api] health: database unreachable")
            db_ok = False
        return {"ok": True, "db": db_ok}

    @app.post("/v1/contact/mail")
    def contact_mail(
        payload: ContactIn,
        ctx: RequestContext = Depends(mail_context),
        mailer: MailDispatcher = Depends(get_dispatcher),
    ):
        subject = f"ClothingLoop Contact Form - {payload.name}"
        body = contact_team_body(payload.name, payload.email, payload.message)
        for addr in settings.contact_emails:
            if not mailer.send(ctx, addr, subject, body):
                return {"ok": False}

        confirmed = mailer.send(
            ctx,
            payload.email,
            "Thank you for contacting Clothing-Loop",
            contact_confirmation_body(payload.name, payload.message),
        )
        return {"ok": confirmed}

    @app.post("/v1/mail", dependencies=[Depends(require_api_key)])
    def send_mail(
        payload: MailIn,
        ctx: RequestContext = Depends(mail_context),
        mailer: MailDispatcher = Depends(get_dispatcher),
    ):
        return {"sent": mailer.send(ctx, payload.to, payload.subject, payload.body)}

    @app.get("/v1/mails", dependencies=[Depends(require_api_key)])
    def list_mails(limit: int = Query(50, ge=1, le=500), db: Engine = Depends(get_db)):
        return [
            {
                "id": r.id,
                "created_at": r.created_at,
                "recipient": r.recipient,
                "subject": r.subject,
                "body": r.body,
                "error": r.error,
            }
            for r in recent_mails(db, limit)
        ]

    return app

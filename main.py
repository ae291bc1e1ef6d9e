import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, List, Literal, Mapping, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

import editing
from aggregator import aggregate
from database import DocumentStore
from errors import ConfigurationError, SchemaEditError, SyncError
from identity import IdentityProvider, bootstrap_identity
from repositories import LogRepository, SchemaRepository, Subscription
from schemas import Identity, LogEntry, LogEntryCreate, Schema
from settings import StoreConfig, bootstrap_token, load_config, session_file
from sync import LiveMirror


load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

STARTUP_SYNC_TIMEOUT = float(os.getenv("STARTUP_SYNC_TIMEOUT", "5"))


# -----------------------------
# Client context
# -----------------------------
@dataclass
class AppContext:
    """
    Everything the routes need, built once at startup and held for the
    process lifetime.
    """
    config: Optional[StoreConfig] = None
    store: Optional[DocumentStore] = None
    identity: Optional[Identity] = None
    schemas: Optional[SchemaRepository] = None
    logs: Optional[LogRepository] = None
    schema_mirror: Optional[LiveMirror] = None
    log_mirror: Optional[LiveMirror] = None
    error: Optional[str] = None

    @property
    def state(self) -> str:
        if self.config is None:
            return "configuration_required"
        if self.identity is None:
            return "signed_out"
        mirrors = (self.schema_mirror, self.log_mirror)
        if all(m is not None and m.loaded for m in mirrors):
            return "ready"
        return "syncing"

    def message(self) -> str:
        return {
            "configuration_required": self.error or "Configuration required",
            "signed_out": "Sign-in failed; no data can be loaded",
            "syncing": self.error or "Syncing with SPIRE...",
            "ready": "Ready",
        }[self.state]

    def close(self) -> None:
        for mirror in (self.schema_mirror, self.log_mirror):
            if mirror is not None:
                mirror.close()


def build_context(
    environ: Optional[Mapping[str, str]] = None,
    store: Optional[DocumentStore] = None,
    sync_timeout: float = STARTUP_SYNC_TIMEOUT,
) -> AppContext:
    try:
        config = load_config(environ)
        if store is None:
            store = DocumentStore.connect(config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {str(e)}")
        return AppContext(error=str(e))

    ctx = AppContext(config=config, store=store)

    provider = IdentityProvider(store, config.auth_secret, session_file(environ))
    ctx.identity = bootstrap_identity(provider, bootstrap_token(environ))
    if ctx.identity is None:
        return ctx

    ctx.schemas = SchemaRepository(store)
    ctx.logs = LogRepository(store)
    try:
        ctx.schema_mirror = LiveMirror(ctx.schemas.subscribe(ctx.identity), "schema").start()
        ctx.log_mirror = LiveMirror(ctx.logs.subscribe(ctx.identity), "logs").start()
    except SyncError as e:
        logger.error(f"Sync error starting subscriptions: {str(e)}")
        ctx.error = str(e)
        ctx.close()
        return ctx

    for mirror in (ctx.schema_mirror, ctx.log_mirror):
        if not mirror.wait_for(lambda _: True, timeout=sync_timeout):
            logger.error(f"Initial {mirror.name} snapshot not received within {sync_timeout}s")
    return ctx


def _context(request: Request) -> AppContext:
    return request.app.state.context


def ready_context(request: Request) -> AppContext:
    ctx = _context(request)
    if ctx.state != "ready":
        raise HTTPException(status_code=503, detail={"state": ctx.state, "message": ctx.message()})
    return ctx


# -----------------------------
# Request bodies
# -----------------------------
class CategoryUpdate(BaseModel):
    purpose: Optional[str] = Field(None)
    label: Optional[str] = Field(None)


class HabitCreate(BaseModel):
    name: str = Field(..., min_length=1)
    rhythm: Literal["daily", "weekly"] = Field("weekly")
    target: int = Field(1, ge=0)
    type: Literal["count", "boolean"] = Field("count")
    id: Optional[str] = Field(None, min_length=1)


class HabitUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    rhythm: Optional[Literal["daily", "weekly"]] = Field(None)
    target: Optional[int] = Field(None, ge=0)
    type: Optional[Literal["count", "boolean"]] = Field(None)


EDIT_STATUS = {"unknown": 404, "conflict": 409, "invalid": 422}


def _edit_schema(ctx: AppContext, edit: Callable[..., Schema], *args, **kwargs):
    try:
        updated = ctx.schemas.apply(
            ctx.identity,
            ctx.schema_mirror.value,
            edit,
            *args,
            before_write=ctx.schema_mirror.set_local,
            **kwargs,
        )
    except SchemaEditError as e:
        raise HTTPException(status_code=EDIT_STATUS.get(e.reason, 400), detail=str(e))
    except SyncError as e:
        # local state keeps the intended edit
        raise HTTPException(status_code=503, detail={"state": "sync_error", "message": str(e)})
    return updated.model_dump(mode="json")


def _update_category(schema: Schema, category_id: str, changes: CategoryUpdate) -> Schema:
    if changes.purpose is not None:
        schema = editing.set_category_purpose(schema, category_id, changes.purpose)
    if changes.label is not None:
        schema = editing.set_category_label(schema, category_id, changes.label)
    return schema


def _update_habit(schema: Schema, category_id: str, habit_id: str, changes: HabitUpdate) -> Schema:
    if changes.name is not None:
        schema = editing.rename_habit(schema, category_id, habit_id, changes.name)
    if changes.target is not None:
        schema = editing.set_habit_target(schema, category_id, habit_id, changes.target)
    if changes.rhythm is not None:
        schema = editing.set_habit_rhythm(schema, category_id, habit_id, changes.rhythm)
    if changes.type is not None:
        schema = editing.set_habit_type(schema, category_id, habit_id, changes.type)
    return schema


def _dump_logs(entries: List[LogEntry]):
    return [e.model_dump(mode="json") for e in entries]


router = APIRouter()


# -----------------------------
# Health & Root
# -----------------------------
@router.get("/")
def read_root(request: Request):
    ctx = _context(request)
    return {"message": "SPIRE Rule of Life backend is running", "state": ctx.state}


@router.get("/test")
def test_database(request: Request):
    """Test endpoint to check if the store is configured, reachable and signed in"""
    ctx = _context(request)
    response = {
        "backend": "✅ Running",
        "configuration": "✅ Loaded" if ctx.config else f"❌ {ctx.message()}",
        "database": "❌ Not Available",
        "database_name": None,
        "identity": "✅ " + ctx.identity.provider if ctx.identity else "❌ Not Signed In",
        "state": ctx.state,
        "collections": [],
    }

    if ctx.store is not None:
        response["database"] = "✅ Available"
        response["database_name"] = ctx.store.name
        try:
            response["collections"] = ctx.store.collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except SyncError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    return response


@router.get("/api/session")
def get_session(request: Request):
    ctx = _context(request)
    return {
        "state": ctx.state,
        "message": ctx.message(),
        "identity": ctx.identity.model_dump() if ctx.identity else None,
    }


# -----------------------------
# Schema Endpoints
# -----------------------------
@router.get("/api/schema")
async def get_schema(ctx: AppContext = Depends(ready_context)):
    return ctx.schema_mirror.value.model_dump(mode="json")


@router.put("/api/schema")
def replace_schema(payload: Schema, ctx: AppContext = Depends(ready_context)):
    return _edit_schema(ctx, lambda _current: payload)


@router.patch("/api/categories/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, ctx: AppContext = Depends(ready_context)):
    if not payload.model_dump(exclude_none=True):
        raise HTTPException(status_code=422, detail="Nothing to update")
    return _edit_schema(ctx, _update_category, category_id, payload)


@router.post("/api/categories/{category_id}/habits", status_code=201)
def create_habit(category_id: str, payload: HabitCreate, ctx: AppContext = Depends(ready_context)):
    return _edit_schema(
        ctx,
        editing.add_habit,
        category_id,
        payload.name,
        rhythm=payload.rhythm,
        target=payload.target,
        habit_type=payload.type,
        habit_id=payload.id,
    )


@router.patch("/api/categories/{category_id}/habits/{habit_id}")
def update_habit(category_id: str, habit_id: str, payload: HabitUpdate, ctx: AppContext = Depends(ready_context)):
    if not payload.model_dump(exclude_none=True):
        raise HTTPException(status_code=422, detail="Nothing to update")
    return _edit_schema(ctx, _update_habit, category_id, habit_id, payload)


@router.delete("/api/categories/{category_id}/habits/{habit_id}")
def delete_habit(category_id: str, habit_id: str, ctx: AppContext = Depends(ready_context)):
    return _edit_schema(ctx, editing.remove_habit, category_id, habit_id)


# -----------------------------
# Review Log Endpoints
# -----------------------------
@router.get("/api/logs")
async def list_logs(limit: Optional[int] = Query(None, ge=1), ctx: AppContext = Depends(ready_context)):
    entries = ctx.log_mirror.value
    return _dump_logs(entries[:limit] if limit else entries)


@router.post("/api/logs", status_code=201)
def submit_review(payload: LogEntryCreate, ctx: AppContext = Depends(ready_context)):
    try:
        entry_id = ctx.logs.append(ctx.identity, payload)
    except SyncError as e:
        # hand the draft back so the client does not lose the user's input
        return JSONResponse(
            status_code=503,
            content={"message": f"Failed to save review: {str(e)}", "draft": payload.model_dump()},
        )
    return {"id": entry_id}


@router.get("/api/progress")
async def get_progress(ctx: AppContext = Depends(ready_context)):
    report = aggregate(ctx.schema_mirror.value, ctx.log_mirror.value)
    return report.model_dump(mode="json")


# -----------------------------
# Live streams
# -----------------------------
async def _stream(websocket: WebSocket, subscription: Subscription, render: Callable):
    async def watch_disconnect():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            subscription.close()

    watcher = asyncio.create_task(watch_disconnect())
    try:
        async for snapshot in iterate_in_threadpool(subscription):
            await websocket.send_json(render(snapshot))
    except SyncError as e:
        logger.error(f"Sync error on live stream {subscription.name}: {str(e)}")
        await websocket.close(code=1011)
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()
        watcher.cancel()


async def _open_stream(websocket: WebSocket, subscribe: Callable[[AppContext], Subscription], render: Callable):
    ctx: AppContext = websocket.app.state.context
    if ctx.state != "ready":
        await websocket.close(code=1013)
        return
    await websocket.accept()
    try:
        subscription = await run_in_threadpool(subscribe, ctx)
    except SyncError as e:
        logger.error(f"Sync error opening live stream: {str(e)}")
        await websocket.close(code=1011)
        return
    await _stream(websocket, subscription, render)


@router.websocket("/ws/schema")
async def stream_schema(websocket: WebSocket):
    await _open_stream(
        websocket,
        lambda ctx: ctx.schemas.subscribe(ctx.identity),
        lambda schema: schema.model_dump(mode="json"),
    )


@router.websocket("/ws/logs")
async def stream_logs(websocket: WebSocket):
    await _open_stream(
        websocket,
        lambda ctx: ctx.logs.subscribe(ctx.identity),
        _dump_logs,
    )


# -----------------------------
# App factory
# -----------------------------
def create_app(context_factory: Callable[[], AppContext] = build_context) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.context = context_factory()
        logger.info(f"Session state: {app.state.context.state}")
        try:
            yield
        finally:
            app.state.context.close()

    app = FastAPI(title="SPIRE Rule of Life API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("FRONTEND_URL", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

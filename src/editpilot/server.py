"""HTTP surface: the streaming agent endpoints, template initialization and a health check."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from . import __version__
from .ai.client import create_chat_client
from .ai.orchestration.runner import AgentRunner, ModelClient
from .ai.orchestration.types import AgentContext, Message, ProjectFile, SelectionRange, TurnInput
from .ai.prompts import build_numbered_content
from .services.cache import TTLCache, content_hash_key
from .services.settings import Settings
from .services.templates import TemplateRegistry, default_registry
from .transport.relay import proxy_agent_stream
from .transport.sse import SSE_HEADERS, EventStream, encode_event

__all__ = [
    "AgentRequest",
    "InitRequest",
    "build_init_frames",
    "build_turn_input",
    "create_app",
    "match_target_files",
    "sanitize_project_files",
]

LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "editpilot-agent"
_HISTORY_ROLES = ("user", "assistant")


class AgentRequest(BaseModel):
    """Body of ``POST /agent``; project files are sanitized separately."""

    messages: list[dict[str, Any]] = Field(default_factory=list)
    fileContent: Any = None
    textFromEditor: str | None = None
    selectionRange: dict[str, Any] | None = None
    projectFiles: list[Any] = Field(default_factory=list)
    currentFilePath: str | None = None


class InitRequest(BaseModel):
    """Body of ``POST /agent/init``: form fields collected for a template."""

    templateId: str | None = None
    requiredFields: dict[str, Any] = Field(default_factory=dict)
    projectFiles: list[Any] = Field(default_factory=list)


def sanitize_project_files(entries: list[Any]) -> tuple[ProjectFile, ...]:
    """Keep well-formed text files; class files (``*.cls``) are never sent to the model."""

    files: list[ProjectFile] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        path, content = entry.get("path"), entry.get("content")
        if not isinstance(path, str) or not isinstance(content, str):
            continue
        if path.endswith("cls"):
            continue
        files.append(ProjectFile(path=path, content=content))
    return tuple(files)


def build_turn_input(
    body: AgentRequest,
    settings: Settings,
    cache: TTLCache[str] | None = None,
) -> TurnInput:
    """Translate a validated request into the runner's input."""

    file_content: str = body.fileContent
    last = body.messages[-1]
    prompt = last.get("content") if isinstance(last.get("content"), str) else ""
    history = tuple(
        Message(role=message["role"], content=message["content"])
        for message in body.messages[:-1]
        if message.get("role") in _HISTORY_ROLES and isinstance(message.get("content"), str)
    )

    numbered = None
    cache_key = None
    if cache is not None:
        cache_key = content_hash_key(
            [(body.currentFilePath or "current", file_content), ("selection", body.textFromEditor or "")]
        )
        numbered = cache.get(cache_key)
    if numbered is None:
        numbered = build_numbered_content(file_content, body.textFromEditor)
        if cache is not None and cache_key is not None:
            cache.set(cache_key, numbered)

    context = AgentContext(
        file_content=file_content,
        numbered_content=numbered,
        text_from_editor=body.textFromEditor,
        selection_range=SelectionRange.from_mapping(body.selectionRange),
        project_files=sanitize_project_files(body.projectFiles),
        current_file_path=body.currentFilePath,
    )
    return TurnInput(prompt=prompt, context=context, history=history, config=settings.turn_config())


def match_target_files(files: tuple[ProjectFile, ...], targets: tuple[str, ...]) -> dict[str, ProjectFile]:
    """Map each template target to the project file at that path or under ``*/<target>``."""

    matched: dict[str, ProjectFile] = {}
    for target in targets:
        for item in files:
            if item.path == target or item.path.endswith(f"/{target}"):
                matched[target] = item
                break
    return matched


def build_init_frames(
    registry: TemplateRegistry,
    template_id: str,
    matched: dict[str, ProjectFile],
    fields: dict[str, Any],
) -> list[bytes]:
    """Plan a template's initialization edits and frame them as one finished turn."""

    planned = registry.build_init_edits(template_id, {target: item.content for target, item in matched.items()}, fields)
    edits = [edit.to_dict() for edit in (replace(edit, file_path=matched[edit.file_path].path) for edit in planned)]
    frames = [encode_event("status", {"state": "started"})]
    if edits:
        frames.append(encode_event("tool", {"name": "propose_edits", "count": len(edits)}))
        frames.append(encode_event("edits", edits))
    text = f"Generated {len(edits)} initialization edit(s) for {len(matched)} file(s)."
    frames.append(encode_event("done", {"text": text, "edits": edits}))
    return frames


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    settings: Settings,
    *,
    client: ModelClient | None = None,
    cache: TTLCache[str] | None = None,
    http_client: httpx.AsyncClient | None = None,
    templates: TemplateRegistry | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Loaded service settings.
        client: Chat client; created from ``settings`` when omitted and the
            settings carry credentials. A created client is closed on shutdown.
        cache: Numbered-content cache shared across requests.
        http_client: Client used by the relay endpoint.
        templates: Template registry; the built-in templates when omitted.
    """

    owned_client = None
    if client is None and settings.configured:
        owned_client = client = create_chat_client(settings.client_settings(), kind=settings.transport)
    runner = AgentRunner(client) if client is not None else None
    if cache is None:
        cache = TTLCache(max_entries=settings.cache_max_entries, ttl_seconds=settings.cache_ttl_seconds)
    if templates is None:
        templates = default_registry()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if owned_client is not None:
                LOGGER.debug("Closing chat client")
                await owned_client.aclose()

    app = FastAPI(title="EditPilot Agent", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.cache = cache
    app.state.runner = runner
    app.state.templates = templates

    async def _parse(request: Request) -> AgentRequest | JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            return _error(400, "Request body must be valid JSON")
        try:
            body = AgentRequest.model_validate(payload)
        except ValidationError as exc:
            LOGGER.debug("Rejected agent request: %s", exc)
            return _error(400, "Invalid request body")
        if not body.messages:
            return _error(400, "messages must be a non-empty array")
        if not isinstance(body.fileContent, str):
            return _error(400, "fileContent must be a string")
        return body

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "model": settings.model,
            "configured": runner is not None,
        }

    @app.post("/agent")
    async def agent(request: Request):
        parsed = await _parse(request)
        if isinstance(parsed, JSONResponse):
            return parsed
        if runner is None:
            return _error(503, "LLM service is not configured")

        turn = build_turn_input(parsed, settings, cache)
        stream = EventStream(heartbeat_interval=settings.heartbeat_interval)
        LOGGER.info(
            "Agent request: %d message(s), %d project file(s), current file %s",
            len(parsed.messages),
            len(turn.context.project_files),
            turn.context.current_file_path or "-",
        )

        async def produce() -> None:
            try:
                await runner.run(turn, stream.send)
            except Exception as exc:
                LOGGER.exception("Agent turn crashed")
                stream.send("error", {"message": f"Agent error: {exc}"})
            finally:
                stream.close()

        async def body_iter() -> AsyncIterator[bytes]:
            task = asyncio.create_task(produce())
            try:
                async for frame in stream.iter_bytes():
                    yield frame
            finally:
                if not task.done():
                    LOGGER.info("Client disconnected; cancelling agent turn")
                    task.cancel()

        return StreamingResponse(body_iter(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/agent/relay")
    async def relay(request: Request):
        upstream = settings.upstream_agent_url
        if not upstream:
            return _error(503, "No upstream agent is configured")
        parsed = await _parse(request)
        if isinstance(parsed, JSONResponse):
            return parsed

        async def body_iter() -> AsyncIterator[bytes]:
            owned = http_client is None
            client_ = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None))
            try:
                async for chunk in proxy_agent_stream(client_, upstream, parsed.model_dump()):
                    yield chunk
            except httpx.HTTPError as exc:
                LOGGER.error("Upstream agent stream failed: %s", exc)
                yield encode_event("error", {"message": "Agent service unavailable"})
            finally:
                if owned:
                    await client_.aclose()

        return StreamingResponse(body_iter(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/templates")
    async def list_templates() -> dict[str, Any]:
        entries = []
        for template_id in templates.ids():
            template = templates.get(template_id)
            entries.append(
                {
                    "id": template_id,
                    "name": template.metadata.name,
                    "description": template.metadata.description,
                    "targetFiles": list(template.target_files),
                }
            )
        return {"templates": entries}

    @app.post("/agent/init")
    async def init(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            return _error(400, "Request body must be valid JSON")
        try:
            body = InitRequest.model_validate(payload)
        except ValidationError as exc:
            LOGGER.debug("Rejected init request: %s", exc)
            return _error(400, "Invalid request body")
        if not body.templateId:
            return _error(400, "templateId is required")
        template = templates.get(body.templateId)
        if template is None:
            return _error(404, f"Unknown template '{body.templateId}'")
        files = sanitize_project_files(body.projectFiles)
        if not files:
            return _error(400, "projectFiles must contain at least one text file")
        matched = match_target_files(files, template.target_files)
        if not matched:
            return _error(404, f"No target files found. Expected: {', '.join(template.target_files)}")

        frames = build_init_frames(templates, body.templateId, matched, body.requiredFields)
        LOGGER.info("Initializing %s in %d file(s)", body.templateId, len(matched))

        async def body_iter() -> AsyncIterator[bytes]:
            for frame in frames:
                yield frame

        return StreamingResponse(body_iter(), media_type="text/event-stream", headers=SSE_HEADERS)

    return app

"""FastAPI server with MCP integration and the review UI's REST API."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from pr_reviewer import __version__
from pr_reviewer.comment_store import parse_status
from pr_reviewer.config import AppConfig, load_config
from pr_reviewer.errors import (
    AggregateProviderFailure,
    NotFoundError,
    ReviewerError,
    TransportError,
    ValidationError,
)
from pr_reviewer.models import ClipboardTarget, CreateCommentInput, McpStatus
from pr_reviewer.runtime import Runtime, build_runtime
from pr_reviewer.targets import auto_select, clipboard_only
from pr_reviewer.tools import mcp, set_runtime

logger = logging.getLogger(__name__)


def _id_list(body: dict[str, Any], key: str) -> list[str]:
    raw = body.get(key) or []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        raise HTTPException(status_code=400, detail=f"{key} must be a list")
    return [str(i) for i in raw if i]


async def _read_body(request: Request) -> dict[str, Any]:
    if not await request.body():
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="JSON object body expected")
    return body


def create_app(
    config: AppConfig | None = None,
    runtime: Runtime | None = None,
    port: int | None = None,
) -> FastAPI:
    """Create the FastAPI application."""
    if runtime is None:
        runtime = build_runtime(config or load_config())
    config = runtime.config
    if port is not None:
        config.port = port
    set_runtime(runtime)

    store = runtime.store
    pipeline = runtime.pipeline

    mcp_http_app = mcp.http_app(path="")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with mcp_http_app.lifespan(app):
            yield
        runtime.close()

    app = FastAPI(title="Local PR Reviewer", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    # ------------------------------------------------------------------
    # Health & discovery
    # ------------------------------------------------------------------

    @app.get("/api/health")
    async def api_health():
        return JSONResponse({"status": "ok", "pollIntervalSeconds": config.poll_interval_seconds})

    @app.get("/api/mcp-status")
    async def api_mcp_status():
        try:
            return JSONResponse(runtime.registry.get_status().to_api())
        except (sqlite3.Error, ReviewerError) as e:
            logger.exception("Failed to read MCP status")
            return JSONResponse({**McpStatus().to_api(), "error": str(e)})

    @app.get("/api/targets")
    async def api_targets(repoPath: str | None = None):
        try:
            targets = runtime.resolver.list_targets()
            status = runtime.registry.get_status()
        except (sqlite3.Error, ReviewerError) as e:
            logger.exception("Failed to list delivery targets")
            return JSONResponse({
                "error": str(e) or "Failed to list targets",
                "targets": [t.to_api() for t in clipboard_only()],
                "mcpStatus": McpStatus().to_api(),
            })

        if repoPath:
            detection = await runtime.detector.list_sessions_for_repo(repoPath)
        else:
            detection = await runtime.detector.list_sessions()
        default = auto_select(targets, detection.coding_agent_sessions)

        result: dict[str, Any] = {
            "targets": [t.to_api() for t in targets],
            "mcpStatus": status.to_api(),
        }
        if default is not None:
            result["defaultTargetId"] = default.id
        return JSONResponse(result)

    # ------------------------------------------------------------------
    # tmux sessions & review sessions
    # ------------------------------------------------------------------

    @app.get("/api/sessions")
    async def api_list_sessions(repoPath: str | None = None):
        if repoPath:
            detection = await runtime.detector.list_sessions_for_repo(repoPath)
        else:
            detection = await runtime.detector.list_sessions()
        result = {
            "available": detection.available,
            "sessions": [s.to_api() for s in detection.sessions],
            "codingAgentSessions": [s.to_api() for s in detection.coding_agent_sessions],
        }
        if detection.error:
            result["error"] = detection.error
        return JSONResponse(result)

    @app.post("/api/sessions")
    async def api_sessions_action(request: Request):
        body = await _read_body(request)

        if body.get("intent") == "test":
            session_name = str(body.get("sessionName") or "").strip()
            if not session_name:
                raise HTTPException(status_code=400, detail="Missing session name")
            stamp = datetime.now().strftime("%H:%M:%S")
            message = (
                f"[PR Reviewer Test] This is a test message sent at {stamp}. "
                "If you see this, the connection is working!"
            )
            try:
                await runtime.tmux.send_to_session(session_name, message)
            except TransportError as e:
                raise HTTPException(status_code=502, detail=str(e))
            return JSONResponse({"success": True})

        try:
            session = store.get_or_create_session(
                str(body.get("repoId") or ""),
                str(body.get("branch") or ""),
                repo_path=body.get("repoPath"),
            )
            if "baseBranchOverride" in body:
                session = store.set_base_branch_override(session.id, body.get("baseBranchOverride"))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return JSONResponse({"session": session.to_api()})

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    @app.get("/api/comments")
    async def api_list_comments(sessionId: str | None = None, status: str | None = None):
        if not sessionId:
            raise HTTPException(status_code=400, detail="Session ID required")
        try:
            comments = store.list_for_session(sessionId, parse_status(status) if status else None)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return JSONResponse({
            "comments": [c.to_api() for c in comments],
            "counts": store.counts_by_status(sessionId),
        })

    @app.post("/api/comments")
    async def api_comments_action(request: Request):
        body = await _read_body(request)
        intent = body.get("intent")
        try:
            if intent == "create":
                try:
                    data = CreateCommentInput.model_validate(body)
                except ValueError as e:
                    raise ValidationError(f"Missing required fields: {e}") from e
                return JSONResponse({"comment": store.create(data).to_api()})

            if intent == "update":
                comment_id = body.get("id")
                if not comment_id:
                    raise ValidationError("Comment ID required")
                content, status = body.get("content"), body.get("status")
                for field, value in (("content", content), ("status", status)):
                    if value is not None and not isinstance(value, str):
                        raise ValidationError(f"{field} must be a string")
                comment = store.update(str(comment_id), content=content, status=status)
                return JSONResponse({"comment": comment.to_api()})

            if intent == "delete":
                comment_id = body.get("id")
                if not comment_id:
                    raise ValidationError("Comment ID required")
                if not store.delete(comment_id):
                    raise NotFoundError("Comment", comment_id)
                return JSONResponse({"success": True})

            if intent in ("stage", "markSent", "cancel"):
                ids = _id_list(body, "ids")
                if not ids:
                    raise ValidationError("No comment IDs provided")
                bulk = {"stage": store.stage, "markSent": store.mark_sent, "cancel": store.cancel}[intent]
                return JSONResponse({"success": True, "count": bulk(ids)})
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        raise HTTPException(status_code=400, detail=f"Unknown intent: {intent}")

    # ------------------------------------------------------------------
    # AI processing
    # ------------------------------------------------------------------

    @app.get("/api/process")
    async def api_process_settings():
        return JSONResponse({
            "availableProviders": pipeline.get_available_providers(),
            "providerModels": pipeline.provider_models(),
            "currentSettings": pipeline.get_settings().to_api(),
        })

    @app.post("/api/process")
    async def api_process_action(request: Request):
        body = await _read_body(request)
        intent = body.get("intent")

        if intent == "process":
            ids = _id_list(body, "commentIds")
            if not ids:
                raise HTTPException(status_code=400, detail="No comments provided")
            comments = store.get_many(ids)
            if not comments:
                raise HTTPException(status_code=404, detail="No valid comments found")
            try:
                processed = await pipeline.process_comments(comments)
            except AggregateProviderFailure as e:
                raise HTTPException(status_code=502, detail=str(e))
            return JSONResponse({
                "success": True,
                "processedText": processed,
                "originalComments": [c.to_api() for c in comments],
            })

        if intent == "saveSettings":
            provider = body.get("provider")
            model = body.get("model")
            if not provider or not model:
                raise HTTPException(status_code=400, detail="Provider and model required")
            try:
                pipeline.save_settings(provider, model)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return JSONResponse({"success": True})

        raise HTTPException(status_code=400, detail=f"Unknown intent: {intent}")

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    @app.post("/api/send")
    async def api_send(request: Request):
        body = await _read_body(request)
        ids = _id_list(body, "commentIds")
        if not ids:
            raise HTTPException(status_code=400, detail="No comments to send")
        comments = store.get_many(ids)
        if not comments:
            raise HTTPException(status_code=404, detail="No valid comments found")

        try:
            target = runtime.resolver.resolve(
                str(body.get("targetId") or ClipboardTarget().id),
                session_name=body.get("sessionName"),
            )
            result = await runtime.delivery.deliver(target, comments)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except TransportError as e:
            raise HTTPException(status_code=502, detail=str(e))

        return JSONResponse({
            "success": True,
            "count": result.count,
            "formatted": result.formatted,
            "targetType": result.target_type,
        })

    # --- MCP mount ---
    app.mount("/mcp", mcp_http_app)

    return app

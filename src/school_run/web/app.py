"""JSON API for scheduled runs and their execution."""

import json
import logging
from datetime import date, time

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from school_run.config import get_config
from school_run.core import validation as validation_mod
from school_run.core.execution import InvalidTransitionError
from school_run.core.registry import RunNotFoundError, RunRegistry
from school_run.core.session import RunSession
from school_run.models import ExecutionSnapshot, ScheduledRun
from school_run.storage import StorageError, load_registry, run_to_dict, stop_from_dict, stop_to_dict

logger = logging.getLogger(__name__)


def _registry(request: Request) -> RunRegistry:
    return request.app.state.registry


def _sessions(request: Request) -> dict[str, RunSession]:
    return request.app.state.sessions


def _not_found(run_id: str) -> JSONResponse:
    return JSONResponse({"error": f"Run not found: {run_id}"}, status_code=404)


# ── Run Handlers ──────────────────────────────────────────────────────────────


async def api_list_runs(request: Request):
    registry = _registry(request)
    bucket = request.query_params.get("bucket", "all")
    if bucket == "upcoming":
        runs = registry.upcoming()
    elif bucket == "past":
        runs = registry.past()
    elif bucket == "today":
        runs = registry.todays_runs()
    elif bucket == "all":
        runs = registry.all_sorted()
    else:
        return JSONResponse({"error": f"Unknown bucket: {bucket}"}, status_code=400)
    return JSONResponse([run_to_dict(r) for r in runs])


async def api_get_run(request: Request):
    run_id = request.path_params["run_id"]
    try:
        run = _registry(request).get(run_id)
    except RunNotFoundError:
        return _not_found(run_id)
    rd = run_to_dict(run)
    rd["upcoming"] = _registry(request).is_upcoming(run)
    rd["events"] = [_event_dict(e) for e in _registry(request).events(run_id)]
    return JSONResponse(rd)


async def api_create_run(request: Request):
    try:
        body = await request.json()
        name = body.get("name", "")
        if not isinstance(name, str):
            raise ValueError(f"name must be a string, got {name!r}")
        stops = [stop_from_dict(s) for s in body.get("stops", [])]
        run_date = date.fromisoformat(body["scheduled_date"])
        run_time = time.fromisoformat(body.get("scheduled_time", "08:00"))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        return JSONResponse({"error": f"Malformed request: {e}"}, status_code=400)

    config = get_config()
    errors = validation_mod.review_run(
        name, stops,
        max_stop_minutes=config.max_stop_minutes,
        max_run_minutes=config.max_run_minutes,
    )
    if validation_mod.blocking(errors):
        return JSONResponse({"errors": [e.to_dict() for e in errors]}, status_code=422)

    run = _registry(request).create(ScheduledRun(
        name=name.strip(),
        scheduled_date=run_date,
        scheduled_time=run_time,
        stops=stops,
    ))
    rd = run_to_dict(run)
    rd["warnings"] = [e.to_dict() for e in errors]
    return JSONResponse(rd, status_code=201)


async def api_complete_run(request: Request):
    run_id = request.path_params["run_id"]
    try:
        run = _registry(request).mark_completed(run_id)
    except RunNotFoundError:
        return _not_found(run_id)
    return JSONResponse(run_to_dict(run))


async def api_delete_run(request: Request):
    run_id = request.path_params["run_id"]
    try:
        _registry(request).delete(run_id)
    except RunNotFoundError:
        return _not_found(run_id)
    _sessions(request).pop(run_id, None)
    return Response(status_code=204)


# ── Execution Handlers ────────────────────────────────────────────────────────

_ACTIONS = {
    "complete-stop": RunSession.complete_current_stop,
    "pause": RunSession.pause,
    "resume": RunSession.resume,
    "cancel": RunSession.cancel,
}


async def api_get_execution(request: Request):
    run_id = request.path_params["run_id"]
    session = _sessions(request).get(run_id)
    if session is None:
        if run_id not in _registry(request):
            return _not_found(run_id)
        return JSONResponse({"error": "Run is not being executed"}, status_code=404)
    return JSONResponse(_execution_dict(session, session.snapshot()))


async def api_execution_action(request: Request):
    run_id = request.path_params["run_id"]
    action = request.path_params["action"]
    sessions = _sessions(request)

    if action != "start" and action not in _ACTIONS:
        return JSONResponse({"error": f"Unknown action: {action}"}, status_code=400)

    try:
        if action == "start":
            existing = sessions.get(run_id)
            if existing and not existing.controller.is_terminal:
                raise InvalidTransitionError(existing.state, "start", "run already started")
            session = RunSession(_registry(request), run_id)
            snap = session.start()
            sessions[run_id] = session
        else:
            session = sessions.get(run_id)
            if session is None:
                registry = _registry(request)
                if run_id not in registry:
                    return _not_found(run_id)
                if action != "resume" or registry.saved_execution(run_id) is None:
                    return JSONResponse({"error": "Run is not being executed"}, status_code=409)
                # paused elsewhere, e.g. by the CLI
                session = RunSession(registry, run_id)
                session.restore()
                sessions[run_id] = session
            snap = _ACTIONS[action](session)
    except RunNotFoundError:
        return _not_found(run_id)
    except InvalidTransitionError as e:
        return JSONResponse({"error": str(e), "state": e.state.value}, status_code=409)

    return JSONResponse(_execution_dict(session, snap))


# ── Serialization ─────────────────────────────────────────────────────────────


def _execution_dict(session: RunSession, snap: ExecutionSnapshot) -> dict:
    return {
        "run_id": snap.run_id,
        "state": snap.state.value,
        "state_label": snap.state.display_text,
        "current_stop_index": snap.current_stop_index,
        "progress": round(session.controller.progress(), 3),
        "stops": [stop_to_dict(s) for s in snap.stops],
    }


def _event_dict(e) -> dict:
    return {
        "event_type": e.event_type,
        "old_value": e.old_value,
        "new_value": e.new_value,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(registry: RunRegistry | None = None) -> Starlette:
    routes = [
        Route("/api/runs", api_list_runs, methods=["GET"]),
        Route("/api/runs", api_create_run, methods=["POST"]),
        Route("/api/runs/{run_id}", api_get_run, methods=["GET"]),
        Route("/api/runs/{run_id}", api_delete_run, methods=["DELETE"]),
        Route("/api/runs/{run_id}/complete", api_complete_run, methods=["POST"]),
        Route("/api/runs/{run_id}/execution", api_get_execution, methods=["GET"]),
        Route("/api/runs/{run_id}/execution/{action}", api_execution_action, methods=["POST"]),
    ]
    app = Starlette(routes=routes)
    app.state.registry = registry if registry is not None else RunRegistry()
    app.state.sessions = {}
    return app


def run_server(host: str = "127.0.0.1", port: int = 8787):
    config = get_config()
    try:
        registry = load_registry(config.data_path)
    except StorageError:
        logger.exception("Could not load runs from %s", config.data_path)
        raise
    uvicorn.run(create_app(registry), host=host, port=port)

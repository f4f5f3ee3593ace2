from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.responses import PlainTextResponse
from typing import TYPE_CHECKING, Optional
from .config import settings
from .errors import LocalStorageError

if TYPE_CHECKING:
    from .main import SyncAgent

app = FastAPI(title="Crossbill Sync Agent")
agent: Optional["SyncAgent"] = None

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

def _pending_sessions() -> Optional[int]:
    if agent is None or not agent.sessions.is_open:
        return None
    try:
        return agent.sessions.count_unsynced()
    except LocalStorageError:
        return None

@app.get("/healthz")
def healthz():
    if not agent:
        return {"status": "starting"}
    if not agent.sessions.is_open:
        # Highlights can still sync, but sessions are not being recorded
        return {"status": "degraded", "reason": "session database unavailable"}
    return {"status": "ok"}

@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if not agent:
        return {"status": "not_ready"}

    last = agent.last_result
    return {
        "pending_sessions": _pending_sessions(),
        "active_session": agent.sessions.has_active_session(),
        "autosync_enabled": agent.config.is_autosync_enabled(),
        "session_tracking_enabled": agent.config.is_session_tracking_enabled(),
        "last_sync": last.model_dump() if last else None,
    }

@app.get("/metrics", response_class=PlainTextResponse)
def metrics():
    # Simple prometheus-style text format
    if not agent:
        return ""

    last = agent.last_result
    lines = [
        f'crossbill_pending_sessions {_pending_sessions() or 0}',
        f'crossbill_active_session {int(agent.sessions.has_active_session())}',
    ]
    if last is not None:
        lines += [
            f'crossbill_last_sync_success {int(last.success)}',
            f'crossbill_last_sync_highlights_created {last.highlights_created}',
            f'crossbill_last_sync_sessions_synced {last.sessions_synced}',
        ]
    return "\n".join(lines)

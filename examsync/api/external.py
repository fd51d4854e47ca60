from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, constr
from typing import List, Optional
from rq.exceptions import NoSuchJobError
from rq.job import Job
from sqlalchemy import select
from sqlalchemy.orm import Session
from examsync.core.auth import TokenData, require_roles
from examsync.core.config import settings
from examsync.core.database import get_db
from examsync.jobs.queue import queue, redis
from examsync.jobs.sync_job import sync_account_job
from examsync.models.domain import SyncStatus
from examsync.models.orm import ExternalAccount

router = APIRouter()

class AccountOut(BaseModel):
    id: str; provider: str; username: str; status: str; status_message: Optional[str] = None
    sync_status: str; sync_total: int; sync_completed: int
    sync_started_at: Optional[datetime] = None; sync_finished_at: Optional[datetime] = None; last_sync_at: Optional[datetime] = None

class SyncRequest(BaseModel):
    provider: str = settings.DEFAULT_PROVIDER
    username: constr(min_length=1)
    password: constr(min_length=1)
    verification_code: Optional[str] = None
    only_exam_ids: Optional[List[str]] = None
    force_attempt_exam_ids: List[str] = []
    attempts_only: bool = False

class SyncQueued(BaseModel):
    job_id: str
    status: str

class SyncJobStatus(BaseModel):
    state: str
    total: int = 0
    completed: int = 0
    current_title: Optional[str] = None
    error: Optional[str] = None
    result: Optional[dict] = None

def _account_out(a: ExternalAccount) -> AccountOut:
    return AccountOut(id=a.id, provider=a.provider, username=a.username, status=a.status, status_message=a.status_message,
                      sync_status=a.sync_status, sync_total=a.sync_total or 0, sync_completed=a.sync_completed or 0,
                      sync_started_at=a.sync_started_at, sync_finished_at=a.sync_finished_at, last_sync_at=a.last_sync_at)

@router.get("/accounts", response_model=List[AccountOut])
def list_accounts(user: TokenData = Depends(require_roles("user", "admin")), db: Session = Depends(get_db)):
    rows = db.scalars(select(ExternalAccount).where(ExternalAccount.user_id == user.sub).order_by(ExternalAccount.provider))
    return [_account_out(a) for a in rows]

@router.post("/sync", response_model=SyncQueued, status_code=202)
def start_sync(payload: SyncRequest, user: TokenData = Depends(require_roles("user", "admin")), db: Session = Depends(get_db)):
    if payload.provider not in settings.SUPPORTED_PROVIDERS:
        raise HTTPException(400, f"Unsupported provider: {payload.provider}")
    account = db.scalar(select(ExternalAccount).where(ExternalAccount.user_id == user.sub, ExternalAccount.provider == payload.provider))
    if account is not None and account.sync_status == SyncStatus.SYNCING.value:
        raise HTTPException(409, "Sync already in progress.")
    job = queue.enqueue(sync_account_job, user.sub, payload.provider, payload.username, payload.password,
                        payload.verification_code, payload.only_exam_ids, payload.force_attempt_exam_ids, payload.attempts_only,
                        meta={"user_id": user.sub, "state": "queued"})
    return SyncQueued(job_id=job.id, status="queued")

@router.get("/sync/status", response_model=SyncJobStatus)
def sync_status(job_id: str = Query(...), user: TokenData = Depends(require_roles("user", "admin"))):
    try:
        job = Job.fetch(job_id, connection=redis)
    except NoSuchJobError:
        raise HTTPException(404, "Job not found")
    meta = job.meta or {}
    if meta.get("user_id") != user.sub and "admin" not in user.roles:
        raise HTTPException(404, "Job not found")
    state = meta.get("state") or job.get_status()
    return SyncJobStatus(state=state, total=int(meta.get("total") or 0), completed=int(meta.get("completed") or 0),
                         current_title=meta.get("current_title"), error=meta.get("error"),
                         result=job.return_value() if state == "done" else None)

from typing import List, Optional
from rq import get_current_job
from examsync.core.exceptions import SyncConflictError
from examsync.extraction.adapter import ExternalCredentials
from examsync.extraction.types import ScrapeProgress
from examsync.services.sync import SyncFilters, sync_external_account


def sync_account_job(user_id: str, provider: str, username: str, password: str, verification_code: Optional[str] = None,
                     only_exam_ids: Optional[List[str]] = None, force_attempt_exam_ids: Optional[List[str]] = None,
                     attempts_only: bool = False):
    job = get_current_job()
    job.meta.update({"state": "running", "completed": 0, "total": 0, "current_title": None}); job.save_meta()

    def on_progress(progress: ScrapeProgress):
        job.meta.update(progress.as_dict()); job.save_meta()

    credentials = ExternalCredentials(provider=provider, username=username, password=password, verification_code=verification_code)
    filters = SyncFilters(only_exam_ids=only_exam_ids, force_attempt_exam_ids=force_attempt_exam_ids or [], attempts_only=attempts_only)
    try:
        result = sync_external_account(user_id, credentials, filters, on_progress=on_progress)
    except SyncConflictError:
        job.meta.update({"state": "conflict"}); job.save_meta()
        raise
    except Exception as e:
        job.meta.update({"state": "failed", "error": str(e)}); job.save_meta()
        raise
    job.meta.update({"state": "done", "count": result.count, "warnings": len(result.warnings)}); job.save_meta()
    return result.as_dict()

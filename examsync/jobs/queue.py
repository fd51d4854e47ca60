from rq import Queue
from redis import Redis
from examsync.core.config import settings
redis = Redis.from_url(settings.REDIS_URL)
queue = Queue(settings.RQ_QUEUE, connection=redis, default_timeout=settings.SYNC_JOB_TIMEOUT)

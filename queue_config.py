import os
import redis
from rq import Queue

# Redis connection (lazy: nothing is opened until the first command)
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
redis_conn = redis.from_url(REDIS_URL)

# Default queue, used for long running container jobs (vzdump backups)
queue = Queue("default", connection=redis_conn)

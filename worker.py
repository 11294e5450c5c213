from queue_config import queue
from rq import Worker
from app_factory import create_app

# The web process owns the auto-sync thread
app = create_app({"ENABLE_AUTO_SYNC_THREAD": False})

if __name__ == "__main__":
    with app.app_context():
        worker = Worker([queue], connection=queue.connection)
        worker.work()

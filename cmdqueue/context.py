from cmdqueue.config import Config
from cmdqueue.database import Database
from cmdqueue.storage import JobStore


class QueueContext:
    """
    Everything the producer and worker sides share: config, database and job store.

    Build one per process and hand it to Enqueuer, Dispatcher, ResultWaiter
    and Canceller.
    """

    def __init__(self, config: Config = None, database_url: str = None):
        self.config = config or Config()
        self.database = Database(database_url or self.config.get("database_url"))
        self.database.initialize()
        self.store = JobStore(self.database)

    def close(self):
        self.database.dispose()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

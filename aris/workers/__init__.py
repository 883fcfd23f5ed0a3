from .base import Worker, WorkerResult
from .http_worker import HttpWorker
from .scripted import ScriptedWorker, WorkerCall, approving_reviewer

__all__ = [
    "Worker",
    "WorkerResult",
    "HttpWorker",
    "ScriptedWorker",
    "WorkerCall",
    "approving_reviewer",
]

"""
Concurrency core: the socket listener, the worker pool and the database
lease pool.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ listener.py     accept on its own thread, parse on a reader         │
    │ connection.py   one client socket, write-once response sink         │
    │ thread_pool.py  fixed threads over a FIFO queue (readers, workers)  │
    │ lease_pool.py   reusable database handles                           │
    └─────────────────────────────────────────────────────────────────────┘
"""

from .connection import ClientConnection, ConnectionState, RequestTooLargeError
from .lease_pool import DatabaseLeasePool
from .listener import SocketListener
from .thread_pool import Task, Worker, WorkerPool, WorkerState

__all__ = [
    "ClientConnection",
    "ConnectionState",
    "RequestTooLargeError",
    "DatabaseLeasePool",
    "SocketListener",
    "Task",
    "Worker",
    "WorkerPool",
    "WorkerState",
]

"""
Tracking of Xen Orchestra tasks.

Every mutating action returns a task reference. A task starts out
``pending`` and ends in ``success`` or ``failure``; it never goes back to
``pending``. Waiting uses the server-side long poll (``wait=result``), one
blocking request per task, one task at a time.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from client import XoSession, query_resources
from decoder import decode_response
from errors import NotFoundError, TaskWaitError, XoApiError, XoError
from query import equals, resolve_href

logger = logging.getLogger(__name__)

TASK_FIELDS = ['id', 'name', 'properties', 'status', 'progress', 'start', 'end', 'result']


class TaskStatus(str, Enum):
    PENDING = 'pending'
    SUCCESS = 'success'
    FAILURE = 'failure'

    @classmethod
    def from_server(cls, value):
        """Map a server status. 'interrupted' and unknown non-pending values count as failure."""
        if value is None or value == cls.PENDING.value:
            return cls.PENDING
        if value == cls.SUCCESS.value:
            return cls.SUCCESS
        if value not in (cls.FAILURE.value, 'interrupted'):
            logger.warning(f"Unknown task status '{value}', treating it as failure")
        return cls.FAILURE


def _timestamp(value):
    # The server sends epoch milliseconds.
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return value


def _progress(value, status):
    if value is None:
        return 0.0 if status == TaskStatus.PENDING else 1.0
    value = float(value)
    if value > 1:
        value = value / 100
    return min(max(value, 0.0), 1.0)


def _result_message(result):
    if isinstance(result, dict):
        message = result.get('message')
        return str(message) if message is not None else None
    if isinstance(result, str):
        return result
    return None


class Task(BaseModel):
    id: str
    status: TaskStatus = TaskStatus.PENDING
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    result_message: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_terminal(self):
        return self.status != TaskStatus.PENDING

    @classmethod
    def from_record(cls, record: Dict[str, Any], task_id=None) -> 'Task':
        """
        Build a Task from a raw task record.

        :param record: Raw record from /rest/v0/tasks
        :param task_id: Id to use when the record has none
        :return: Task snapshot
        """
        identifier = record.get('id') or task_id
        if not identifier:
            raise XoApiError(f"Task record has no id: {record}")
        properties = record.get('properties') or {}
        status = TaskStatus.from_server(record.get('status'))
        progress = record.get('progress', properties.get('progress'))
        return cls(
            id=str(identifier),
            status=status,
            progress=_progress(progress, status),
            started_at=_timestamp(record.get('start')),
            ended_at=_timestamp(record.get('end')),
            result_message=_result_message(record.get('result')),
            name=record.get('name') or properties.get('name'),
        )

    def advance(self, newer: 'Task') -> 'Task':
        """
        Return the newer snapshot of this task.

        :raises ValueError: If the newer snapshot is for another task or moves a finished task back to pending
        """
        if newer.id != self.id:
            raise ValueError(f"Snapshot for task {newer.id} cannot update task {self.id}")
        if self.is_terminal and not newer.is_terminal:
            raise ValueError(f"Task {self.id} already finished with status '{self.status.value}'")
        return newer


def task_id_of(handle) -> str:
    """Accept a Task, a task href or a bare task id."""
    if isinstance(handle, Task):
        return handle.id
    handle = str(handle)
    if '/' in handle:
        return resolve_href(handle)
    return handle


def _fetch_task(session: XoSession, task_id, params, timeout=None):
    resp = session._get(f'/tasks/{task_id}', params=params, timeout=timeout)
    record = decode_response(resp)
    if not record:
        raise NotFoundError('tasks', task_id)
    if not isinstance(record, dict):
        raise XoApiError(f"Expected a JSON object for task {task_id}, got {type(record).__name__}")
    return Task.from_record(record, task_id)


def poll(session: XoSession, task_id) -> Task:
    """
    Fetch the current state of a task without waiting.

    :param session: Connected XoSession
    :param task_id: Task id, href or Task
    :return: Task snapshot
    """
    session.require_connected()
    task_id = task_id_of(task_id)
    task = _fetch_task(session, task_id, {'fields': ','.join(TASK_FIELDS)})
    logger.debug(f"Task {task_id} is {task.status.value} ({task.progress:.0%})")
    return task


def start_from_reference(session: XoSession, href) -> Task:
    """
    Start tracking the task behind a reference returned by an action.

    :param session: Connected XoSession
    :param href: Task reference (e.g., '/rest/v0/tasks/abc123')
    :return: Initial Task snapshot
    """
    return poll(session, resolve_href(href))


def wait(session: XoSession, task_ids: Iterable, return_snapshots=True) -> Optional[List[Task]]:
    """
    Block until each task has finished, one task at a time.

    The server holds each request open until the task is done, so there is
    exactly one request per task.

    :param session: Connected XoSession
    :param task_ids: Task ids, hrefs or Task objects, processed in order (a single one is accepted too)
    :param return_snapshots: Return the final snapshots, otherwise return None
    :return: List of final Task snapshots, or None
    :raises TaskWaitError: If waiting on one task fails; earlier results are in ``completed``
    """
    if isinstance(task_ids, (str, Task)):
        task_ids = [task_ids]
    session.require_connected()
    params = {'fields': ','.join(TASK_FIELDS), 'wait': 'result'}
    completed = []
    for handle in task_ids:
        task_id = task_id_of(handle)
        try:
            task = _fetch_task(session, task_id, params, timeout=session.wait_timeout)
        except XoError as e:
            logger.error(f"Waiting for task {task_id} failed: {e}")
            raise TaskWaitError(task_id, e, completed) from e
        if task.status == TaskStatus.SUCCESS:
            logger.info(f"Task {task_id} completed successfully")
        elif task.status == TaskStatus.FAILURE:
            logger.warning(f"Task {task_id} failed: {task.result_message}")
        else:
            logger.warning(f"Task {task_id} is still pending after waiting")
        completed.append(task)
    return completed if return_snapshots else None


def list_tasks(session: XoSession, status=None, limit=None) -> List[Task]:
    """
    List tasks, optionally only those with the given status.

    :param session: Connected XoSession
    :param status: Optional TaskStatus or status string
    :param limit: Result limit, 0 for all, None for the session default
    :return: List of Task snapshots
    """
    if isinstance(status, TaskStatus):
        status = status.value
    clauses = [equals('status', status)] if status else None
    stream = query_resources(session, 'tasks', TASK_FIELDS, clauses, limit)
    return [Task.from_record(record) for record in stream]

"""
Exceptions raised by the Xen Orchestra REST client.
"""


class XoError(Exception):
    pass


class NotConnectedError(XoError):
    def __init__(self, message='No active Xen Orchestra session, call connect() first'):
        super().__init__(message)


class XoConnectionError(XoError):
    pass


class HrefFormatError(XoError):
    def __init__(self, href):
        self.href = href
        super().__init__(f"Malformed resource reference: {href!r}")


class NotFoundError(XoError):
    def __init__(self, collection, identifier):
        self.collection = collection
        self.identifier = identifier
        super().__init__(f"{collection}/{identifier} not found")


class DecodeError(XoError):
    def __init__(self, message, body=None):
        self.body = body
        super().__init__(message)


class XoApiError(XoError):
    def __init__(self, message, status_code=None, body=None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class TaskWaitError(XoApiError):
    """
    Raised when waiting on one task fails. Waits that finished before the
    failure are kept in ``completed`` so the caller can retry the rest.
    """
    def __init__(self, task_id, cause, completed=None):
        self.task_id = task_id
        self.completed = list(completed or [])
        super().__init__(
            f"Waiting for task {task_id} failed: {cause}",
            status_code=getattr(cause, 'status_code', None),
            body=getattr(cause, 'body', None),
        )

"""
Errors raised while reading or writing the queue document (queue.json).
"""


class PersistenceError(Exception):
    """The queue document could not be read or written."""

    pass


class LoadError(PersistenceError):
    """
    The queue file exists but is unreadable, is not valid JSON, or does
    not validate as a job list plus queue config.
    """

    pass


class SaveError(PersistenceError):
    """Writing the queue document to its temp file or replacing queue.json failed."""

    pass

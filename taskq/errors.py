class TaskQueueError(Exception):
    """Base class for taskq errors."""


class SerializationError(TaskQueueError):
    """A record could not be encoded or decoded."""


class SubmissionError(TaskQueueError):
    """Persisting or publishing a new task failed; nothing was submitted."""


class ExecutionError(TaskQueueError):
    """A task handler failed. Always recoverable through the retry scheduler."""

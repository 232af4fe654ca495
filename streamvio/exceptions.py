"""
Exception types raised across the job submission boundary.
"""


class StreamVioError(Exception):
    """Base class for StreamVio errors."""


class JobValidationError(StreamVioError):
    """A transcode request was rejected before it entered the queue."""


class JobStoreError(StreamVioError):
    """Reading or writing a job record failed."""


class JobPreparationError(StreamVioError):
    """A started job could not be turned into an encoder command."""

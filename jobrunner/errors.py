class JobRunnerError(Exception):
    """Base class for every error raised by jobrunner."""


class JobNotFound(JobRunnerError, LookupError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class HandlerNotFound(JobRunnerError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"No handler registered for job type: {name}")
        self.name = name


class ConfigurationError(JobRunnerError, ValueError):
    pass


class InvalidTransition(JobRunnerError, ValueError):
    def __init__(self, job_id: str, src: str, dst: str):
        super().__init__(f"Job {job_id}: cannot move from '{src}' to '{dst}'")
        self.job_id = job_id
        self.src = src
        self.dst = dst


class StorageError(JobRunnerError, RuntimeError):
    pass

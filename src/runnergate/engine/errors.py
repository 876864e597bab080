"""RunnerGate engine errors."""


class RunnerGateError(Exception):
    """Base error for RunnerGate operations."""

    def __init__(self, message: str, code: str = "RUNNERGATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TaskNotFound(RunnerGateError):
    """Task does not exist."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}", "TASK_NOT_FOUND")
        self.task_id = task_id


class ParticipantNotFound(RunnerGateError):
    """Participant is not in the coordinate store."""

    def __init__(self, participant_id: str):
        super().__init__(f"Participant not found: {participant_id}", "PARTICIPANT_NOT_FOUND")
        self.participant_id = participant_id


class InvalidStateTransition(RunnerGateError):
    """Invalid task state transition."""

    def __init__(self, current_status: str, requested_status: str):
        super().__init__(
            f"Invalid transition from {current_status} to {requested_status}",
            "INVALID_STATE_TRANSITION",
        )
        self.current_status = current_status
        self.requested_status = requested_status


class NotNotifiedRunner(RunnerGateError):
    """Runner is not the one currently holding the task."""

    def __init__(self, task_id: str, runner_id: str):
        super().__init__(
            f"Runner {runner_id} does not hold task {task_id}",
            "NOT_NOTIFIED_RUNNER",
        )
        self.task_id = task_id
        self.runner_id = runner_id


class NotificationExpired(RunnerGateError):
    """The runner's response window has already closed."""

    def __init__(self, task_id: str, runner_id: str):
        super().__init__(
            f"Notification for task {task_id} to runner {runner_id} has expired",
            "NOTIFICATION_EXPIRED",
        )
        self.task_id = task_id
        self.runner_id = runner_id


class ConcurrentModification(RunnerGateError):
    """Another writer changed the task between read and conditional write."""

    def __init__(self, task_id: str):
        super().__init__(
            f"Task {task_id} was modified concurrently",
            "CONCURRENT_MODIFICATION",
        )
        self.task_id = task_id


class LocationUnavailable(RunnerGateError):
    """No live fix and no usable stored coordinates for a subject."""

    def __init__(self, subject_id: str):
        super().__init__(f"Location unavailable for {subject_id}", "LOCATION_UNAVAILABLE")
        self.subject_id = subject_id


class UpstreamUnavailable(RunnerGateError):
    """A collaborator (store or location service) could not be reached."""

    def __init__(self, service: str, detail: str = ""):
        message = f"{service} unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, "UPSTREAM_UNAVAILABLE")
        self.service = service

"""Error taxonomy for the scheduling engine."""


class ScheduleError(Exception):
    """Base class for scheduling errors."""


class CycleDetected(ScheduleError):
    """A predecessor link would close (or already closes) a loop."""

    def __init__(self, activity_ids):
        self.activity_ids = list(activity_ids)
        super().__init__(
            "Graph is not acyclic; cycle through: " + ", ".join(self.activity_ids)
        )


class InvalidCalendar(ScheduleError):
    """A calendar yields no work day within the search horizon."""

    def __init__(self, calendar_id, message=None):
        self.calendar_id = calendar_id
        super().__init__(message or f"Calendar '{calendar_id}' has no work days in range")


class InvalidDistribution(ScheduleError):
    """Malformed min / most likely / max ordering."""

    def __init__(self, activity_id, message):
        self.activity_id = activity_id
        super().__init__(f"{activity_id}: {message}")


class UnknownActivity(ScheduleError, KeyError):
    def __init__(self, activity_id):
        self.activity_id = activity_id
        super().__init__(f"Unknown activity id: {activity_id!r}")

    def __str__(self):
        return self.args[0]


class SimulationCancelled(ScheduleError):
    """Raised at a chunk boundary when the caller cancels a run."""

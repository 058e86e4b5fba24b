"""
Progress reporting, cancellation and result tracking for export jobs.
"""

import logging
import time

log = logging.getLogger(__name__)


class CancellationToken(object):
    """
    Cooperative cancellation flag.

    Export loops poll is_cancelled() at the top of every iteration; work
    already in progress is never interrupted.
    """

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    def is_cancelled(self):
        return self._cancelled


class ExportFailure(object):
    """A failed export item."""

    def __init__(self, label, message, detail=None):
        self.label = label
        self.message = message
        self.detail = detail

    def __repr__(self):
        return "ExportFailure({!r}, {!r})".format(self.label, self.message)


class ExportProgress(object):
    """
    Progress sink for a batch export.

    Tracks the current task label and value, counts successes, records
    failures with their diagnostic detail, and answers cancellation queries
    through an injected CancellationToken.
    """

    def __init__(self, count, unit='item', cancel_token=None, on_update=None):
        """
        Args:
            count: Number of items the export is expected to process.
            unit: Item noun used in log messages (e.g. 'tile').
            cancel_token: CancellationToken polled by is_cancelled().
            on_update: Optional callable(task_name, task_value) invoked on
                every progress change.
        """
        self.count = count
        self.unit = unit
        self.cancel_token = cancel_token or CancellationToken()
        self.on_update = on_update

        self.task_name = None
        self.task_value = 0
        self.succeeded = []
        self.failures = []
        self.last_export_path = None
        self._started_at = None

    def start(self):
        self._started_at = time.time()
        self.succeeded = []
        self.failures = []
        log.info("Exporting %d %s(s)", self.count, self.unit)

    def is_cancelled(self):
        return self.cancel_token.is_cancelled()

    def set_current_task_name(self, name):
        self.task_name = name
        log.debug("%s", name)
        if self.on_update is not None:
            self.on_update(self.task_name, self.task_value)

    def set_current_task_value(self, value):
        self.task_value = value
        if self.on_update is not None:
            self.on_update(self.task_name, self.task_value)

    def mark(self, label, success, message=None, detail=None):
        """
        Record the outcome of one export item.

        Args:
            label: Path or name identifying the item.
            success: True if the item exported.
            message: Failure message.
            detail: Failure detail (typically a formatted traceback).
        """
        if success:
            self.succeeded.append(label)
            self.last_export_path = label
        else:
            self.failures.append(ExportFailure(label, message, detail))
            log.warning("Failed to export %s: %s", label, message)
            if detail:
                log.debug("%s", detail)

    def finish(self):
        """Log a summary of the export."""
        elapsed = time.time() - self._started_at if self._started_at else 0.0

        if self.is_cancelled():
            log.info("Export cancelled after %d %s(s) (%.1fs)",
                     len(self.succeeded), self.unit, elapsed)
        elif self.failures:
            log.info("Exported %d %s(s), %d failed (%.1fs)",
                     len(self.succeeded), self.unit, len(self.failures),
                     elapsed)
        else:
            log.info("Exported %d %s(s) (%.1fs)", len(self.succeeded),
                     self.unit, elapsed)

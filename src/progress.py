"""Install progress reporting.

Purely observational: nothing in the install path depends on what is
reported here.
"""

import logging

logger = logging.getLogger(__name__)


class Progress:
    """Counts completed steps against a total and logs them."""

    def __init__(self, total=0):
        self.total = total
        self.done = 0
        self.warnings = []

    def set_total(self, total):
        self.total = total
        self.done = 0

    def inc(self, message=None):
        self.done += 1
        if message:
            logger.debug("[%d/%d] %s", self.done, self.total, message)

    def log(self, message):
        logger.debug(message)

    def warning(self, message):
        self.warnings.append(message)
        logger.warning(message)

    def finish(self, message="Done"):
        logger.info("%s (%d/%d)", message, self.done, self.total)

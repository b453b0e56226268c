"""Color definitions for console output.

Rich color names shared by the summary tables and CLI messages.
"""


class MigrationColors:
    """Color palette for KV Bridge console output.

    Reference: https://rich.readthedocs.io/en/stable/appendix/colors.html
    """

    SUCCESS = "green"
    ERROR = "red"

    PROGRESS = "blue"
    RATE = "bright_blue"

    # Status colors
    RUNNING = "yellow"
    COMPLETE = "green"
    FAILED = "red"
    PENDING = "dim"
    SKIPPED = "dark_orange"

    BORDER = "blue"
    LABEL = "bold"

"""
Plan compiler errors.

A chain that cannot be compiled is a plain, fatal error. When raised from
inside a job body the queue records it as an ordinary failure.
"""


class PlanError(Exception):
    """Base exception for plan compilation failures."""
    pass


class PlanValidationError(PlanError, ValueError):
    """
    The media chain is unusable.

    Raised when:
    - The chain is missing or malformed
    - No load node (or more than one) is present
    - No export node is present
    """

    pass

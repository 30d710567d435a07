"""
Exception types raised by the unifier's own control logic.

Malformed document content never raises: it is dropped, contained by the
safety net, or degraded to a notice. Only the errors below escalate to a
fatal run result.
"""


class UnifierError(Exception):
    """Base exception for orchestration-level failures."""

    pass


class PlaceholderResolutionError(UnifierError):
    """A token could not be mapped back to a payload, or the depth bound was hit."""

    pass


class PlaceholderCycleError(PlaceholderResolutionError):
    """A payload refers, directly or transitively, to its own token."""

    pass


class RendererError(UnifierError):
    """The diagram renderer rejected a submission or reported an unknown handle."""

    pass

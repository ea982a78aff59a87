"""
Errors raised by the rectification stages.

Every error is local to one operation: the caller may move anchors or change
the requested ratio and retry.  ``rule`` names the check that failed so the
caller can tell the user what to fix.
"""


class PerspectiveError(Exception):
    rule = "unknown"

    def __init__(self, message: str, rule: str = None):
        super().__init__(message)
        if rule is not None:
            self.rule = rule


class AmbiguousAnchors(PerspectiveError):
    """The anchors cannot be assigned to rectangle corners unambiguously."""


class WrongAnchorCount(PerspectiveError):
    rule = "anchor-count"

    def __init__(self, count: int):
        super().__init__(f"4 anchors required, got {count}")
        self.count = count


class SizeOverflow(PerspectiveError):
    rule = "sink-size"


class AllocationFailure(PerspectiveError):
    rule = "allocation"


class DegenerateTransform(PerspectiveError):
    """The homography system has no usable one-dimensional null space."""


class EmptyProjection(PerspectiveError):
    rule = "empty-projection"


class InvalidRatio(PerspectiveError):
    rule = "ratio"

"""Error taxonomy of the compositing engine.

Only ``FetchFailure`` and ``ExportFailure`` ever escape a public call.
``StitchDegenerate`` is a warning category; the rest are raised and caught
inside the component that tolerates them.
"""

from __future__ import annotations


class FetchFailure(RuntimeError):
    """All endpoints were tried (or timed out) and no data came back."""


class StitchDegenerate(UserWarning):
    """Arcs were left over whose endpoints match nothing else."""


class TileFailure(RuntimeError):
    """A single basemap tile could not be retrieved or decoded."""


class ProjectionUndefined(RuntimeError):
    """Nothing to project (empty ring set or zero-extent input)."""


class ExportFailure(RuntimeError):
    """Export aborted; no artifact was written."""

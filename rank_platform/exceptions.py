"""Exceptions raised by the geo-grid rank tracking engine."""


class GeoGridError(Exception):
    """Base class for all rank tracking errors."""


class GridValidationError(GeoGridError, ValueError):
    """Raised when grid parameters are degenerate (size < 2, radius <= 0)."""


class PolarLatitudeError(GridValidationError):
    """Raised when a latitude is too close to a pole for longitude spacing."""


class ProviderError(GeoGridError):
    """A single ranking-provider call failed.

    Soft condition: the affected cell/keyword pair is recorded as unranked
    and the run continues.
    """


class ProviderConfigurationError(ProviderError):
    """The ranking provider cannot serve any request (e.g. missing credentials).

    The whole run fails before any observation is attempted.
    """


class RunCancelledError(GeoGridError):
    """Raised when a sampling run is cancelled before it was committed."""


class SnapshotMismatchError(GeoGridError, ValueError):
    """Raised when two grid snapshots are not positionally comparable."""


class CampaignNotFoundError(GeoGridError, LookupError):
    """Raised when the campaign store has no campaign with the given id."""

"""Exceptions raised by the category catalogue."""


class CatalogError(RuntimeError):
    """Base class for catalogue failures surfaced to callers."""


class CatalogBuildError(CatalogError):
    """The build cannot proceed (unresolvable tables or missing key columns)."""


class CatalogBuildInProgressError(CatalogError):
    """Another build or import currently owns the catalogue state."""


class CatalogValidationError(CatalogError, ValueError):
    """Caller-supplied parameters or payloads are invalid."""


__all__ = [
    "CatalogBuildError",
    "CatalogBuildInProgressError",
    "CatalogError",
    "CatalogValidationError",
]

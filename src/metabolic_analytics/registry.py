import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Report builder signature: def builder(snapshot: CohortSnapshot, params: ReportParams) -> Any
ReportFn = Callable[..., Any]

SCOPES = ("cohort", "participant")


@dataclass(frozen=True)
class ReportSpec:
    name: str
    fn: ReportFn
    description: str
    scope: str


# One builder per report name
_registry: dict[str, ReportSpec] = {}


def report(
    name: str,
    *,
    description: str = "",
    scope: str = "cohort",
) -> Callable[[ReportFn], ReportFn]:
    """Register a pure report builder under ``name``.

    Participant-scoped reports need a ``user_id`` at run time.

    Usage:
        @report("flags", description="Clinical health flags")
        def build_flags(snapshot, params):
            ...
    """
    if scope not in SCOPES:
        raise ValueError(f"Unknown report scope={scope!r} for {name!r}")

    def decorator(fn: ReportFn) -> ReportFn:
        if name in _registry:
            raise ValueError(f"Duplicate report name={name!r}")
        _registry[name] = ReportSpec(
            name=name,
            fn=fn,
            description=description,
            scope=scope,
        )
        logger.debug("Registered report %s (%s)", name, scope)
        return fn

    return decorator


def get_report(name: str) -> ReportSpec | None:
    return _registry.get(name)


def registered_reports() -> list[str]:
    return list(_registry.keys())


def describe_reports() -> dict[str, dict[str, str]]:
    """Name -> description and scope, for listings."""
    return {
        spec.name: {"description": spec.description, "scope": spec.scope}
        for spec in _registry.values()
    }

"""Entry-point lookup for the ``vestibule.*`` contribution groups.

Installed distributions register routers, middleware, exception handlers
and lifespan hooks by name. Names are unique per group: when two
distributions register the same name, the first one loaded wins and the
other is reported. Results are ordered by name so application assembly does
not depend on installation order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DiscoveredContribution:
    """A loaded entry point.

    Attributes:
        name: Entry point name (e.g., ``"oidc_session"``).
        group: Entry point group (e.g., ``"vestibule.middleware"``).
        target: The ``module:attribute`` reference it was loaded from.
        value: The loaded object.
    """

    name: str
    group: str
    target: str
    value: Any


def discover(
    group: str,
    *,
    exclude_names: frozenset[str] = frozenset(),
) -> list[DiscoveredContribution]:
    """Load every entry point registered under ``group``.

    An entry point whose module fails to import is logged with its target
    and skipped; the rest of the group still loads.

    Args:
        group: Entry point group (e.g., ``"vestibule.routers"``).
        exclude_names: Entry point names to skip.

    Returns:
        Loaded contributions, sorted by name.
    """
    loaded: dict[str, DiscoveredContribution] = {}

    for ep in entry_points(group=group):
        if ep.name in exclude_names:
            logger.debug("Skipping excluded entry point %s:%s", group, ep.name)
            continue
        if ep.name in loaded:
            logger.warning(
                "Duplicate entry point %s:%s (%s) ignored; already loaded from %s",
                group,
                ep.name,
                ep.value,
                loaded[ep.name].target,
            )
            continue
        try:
            value = ep.load()
        except Exception:
            logger.exception("Failed to load entry point %s:%s (%s)", group, ep.name, ep.value)
            continue
        loaded[ep.name] = DiscoveredContribution(
            name=ep.name, group=group, target=ep.value, value=value
        )

    contributions = [loaded[name] for name in sorted(loaded)]
    logger.info(
        "Discovered %d contributions in group %r: %s",
        len(contributions),
        group,
        ", ".join(loaded) or "-",
    )
    return contributions

"""Conditional transitions — the single compare-and-swap write primitive.

Every state change in the pipeline is a set-based update whose filter
contains the expected prior state::

    UPDATE <table> SET <changes> WHERE id = :id AND <guard>

Concurrent callers racing on the same row produce one winner; everyone else
sees zero affected rows and treats that as an idempotent no-op.
"""

from typing import Any

import structlog
from protean.utils.globals import current_domain
from protean.utils.query import Q

logger = structlog.get_logger(__name__)


def conditional_update(aggregate_cls, identifier: str, guard: dict[str, Any], changes: dict[str, Any]) -> bool:
    """Apply ``changes`` to one row only if it still matches ``guard``.

    ``guard`` uses Protean lookup syntax (``status__in=[...]``,
    ``stripe_refund_id__isnull=True``). An equality guard against ``None``
    never matches, as in SQL. Returns True when this call performed the
    write and False when the row had already moved on.
    """
    dao = current_domain.repository_for(aggregate_cls)._dao
    affected = dao._update_all(Q(id=identifier, **guard), **changes)

    if not affected:
        logger.info(
            "conditional_update_noop",
            aggregate=aggregate_cls.__name__,
            id=identifier,
            guard=_describe(guard),
        )
        return False
    return True


def transition_status(aggregate_cls, identifier: str, expected, target, **changes: Any) -> bool:
    """Move ``status`` from any of ``expected`` to ``target``.

    ``expected`` and ``target`` may be enum members or raw values.
    """
    expected_values = [_value(status) for status in _as_list(expected)]
    return conditional_update(
        aggregate_cls,
        identifier,
        guard={"status__in": expected_values},
        changes={"status": _value(target), **changes},
    )


def _as_list(value) -> list:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def _value(status) -> Any:
    return getattr(status, "value", status)


def _describe(guard: dict[str, Any]) -> dict[str, Any]:
    described = {}
    for key, value in guard.items():
        if isinstance(value, (list, tuple, set, frozenset)):
            described[key] = [_value(item) for item in value]
        else:
            described[key] = _value(value)
    return described

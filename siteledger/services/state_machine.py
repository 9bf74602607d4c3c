"""
Shared transition guard for the daily-log and requisition state machines.

Transitions are compare-and-set updates: the UPDATE only matches while the
row is still in an allowed source state, so of two concurrent attempts on the
same entity exactly one changes the row and the other sees rowcount 0 and
gets InvalidTransitionError. Different entities never contend.
"""

import logging

from sqlalchemy import update

from siteledger.core.exceptions import InvalidTransitionError
from siteledger.models import db

logger = logging.getLogger(__name__)


def validate_transition(transitions: dict, action: str, current: str) -> str | None:
    """Return the target state of ``action`` from ``current``, or None if not allowed."""
    rule = transitions.get(action)
    if rule is None or current not in rule["from"]:
        return None
    return rule["to"]


def apply_transition(model, entity, transitions: dict, action: str, values: dict, label: str):
    """
    Move ``entity`` along ``action`` and stage ``values`` in the same UPDATE.

    The row's ``version`` is bumped. The caller owns the commit; on failure
    the session is rolled back and nothing is written.

    Raises:
        InvalidTransitionError: action not allowed from the row's current state,
            including when a concurrent writer got there first.
    """
    rule = transitions[action]
    entity_id = entity.id
    current = entity.status
    if validate_transition(transitions, action, current) is None:
        db.session.rollback()
        raise InvalidTransitionError(label, entity_id, current, action)

    result = db.session.execute(
        update(model)
        .where(model.id == entity_id, model.status.in_(rule["from"]))
        .values(status=rule["to"], version=model.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        db.session.refresh(entity)
        logger.info("Lost transition race on %s %s (%s), now %s",
                    label, entity_id, action, entity.status,
                    extra={"entity_type": label, "entity_id": entity_id})
        raise InvalidTransitionError(label, entity_id, entity.status, action)

    db.session.refresh(entity)
    return entity

"""
Rule matcher for deciding which routing rule applies to a lead.

Pure functions, no I/O. A rule matches when every non-empty condition clause
accepts the lead; priority (not specificity) decides between matching rules.
"""
from typing import Any, Iterable, Optional
import logging

from leadrouter.schemas.conditions import RuleConditions


logger = logging.getLogger(__name__)


def rule_conditions(rule: Any) -> RuleConditions:
    """Structured view of a rule's stored conditions."""
    conditions = getattr(rule, "conditions", None)
    if isinstance(conditions, RuleConditions):
        return conditions
    return RuleConditions.from_blob(conditions)


def matches(lead: Any, rule: Any) -> bool:
    """
    Check if a lead satisfies a routing rule.

    Args:
        lead: Lead (or any object with the lead's firmographic attributes)
        rule: Routing rule with a ``conditions`` blob

    Returns:
        bool: True if all present conditions accept the lead
    """
    return rule_conditions(rule).matches(lead)


def select_matching_rule(lead: Any, rules: Iterable[Any]) -> Optional[Any]:
    """
    First matching rule by priority descending.

    Rules are re-sorted here (stable, so equal priorities keep caller order);
    storage order never decides between two matching rules.
    """
    ordered = sorted(rules, key=lambda r: getattr(r, "priority", 0) or 0, reverse=True)

    for rule in ordered:
        if matches(lead, rule):
            logger.debug(f"Lead {getattr(lead, 'id', None)} matched rule {getattr(rule, 'rule_name', None)}")
            return rule

    return None

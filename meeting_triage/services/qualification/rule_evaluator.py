"""
Rule evaluator.

Turns a meeting's attributes plus the user's ordered rule set into a verdict.
First matching active rule wins; nothing matched (or no rules) means the
meeting needs a human. ``evaluate`` never raises and never touches I/O;
``validate_rule`` is the boundary check applied to rules before that.
"""

from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from typing import Any

from meeting_triage.errors import ValidationError
from meeting_triage.models.domain.meeting_domain import (
    ACTION_OUTCOMES,
    RULE_ACTIONS,
    RULE_FIELDS,
    RULE_OPERATORS,
    Meeting,
    QualificationRule,
    Verdict,
)

_NUMERIC_OPERATORS = {"gte", "lte"}
_STRIP_CHARS = str.maketrans("", "", "$,_ ")


def evaluate(meeting: Meeting, rules: Iterable[QualificationRule]) -> Verdict:
    """
    Evaluate ``meeting`` against ``rules``.

    Args:
        meeting: Meeting whose attributes are read
        rules: Any iterable of rules; inactive ones are ignored

    Returns:
        Verdict: outcome, reason and the matched rule (if any)
    """
    active = sorted((rule for rule in rules if rule.is_active), key=QualificationRule.sort_key)

    if not active:
        return Verdict(outcome="needs_review", reason="No active qualification rules")

    missing_fields: list[str] = []
    skipped = 0

    for rule in active:
        value = field_value(meeting, rule)
        if value is None:
            skipped += 1
            label = _rule_label(rule)
            if label not in missing_fields:
                missing_fields.append(label)
            continue

        if _matches(rule, value):
            outcome = ACTION_OUTCOMES.get(rule.action, "needs_review")
            return Verdict(
                outcome=outcome,
                reason=f"{rule.name}: {rule.field} {rule.operator} {rule.value}",
                matched_rule=rule,
            )

    if skipped == len(active):
        return Verdict(
            outcome="needs_review",
            reason=f"Missing data for automatic qualification: {', '.join(missing_fields)}",
        )

    reason = "No qualification rule matched"
    if missing_fields:
        reason = f"{reason} (missing: {', '.join(missing_fields)})"
    return Verdict(outcome="needs_review", reason=reason)


def validate_rule(rule: QualificationRule) -> QualificationRule:
    """
    Check a rule is well formed before it is stored or evaluated.

    Raises:
        ValidationError: Unknown field/operator/action, a custom rule without a
            form key, or a non-numeric value on a numeric operator
    """
    if rule.field not in RULE_FIELDS:
        raise ValidationError(f"Unknown rule field: {rule.field}", field="field", operation="validate_rule")
    if rule.operator not in RULE_OPERATORS:
        raise ValidationError(f"Unknown rule operator: {rule.operator}", field="operator", operation="validate_rule")
    if rule.action not in RULE_ACTIONS:
        raise ValidationError(f"Unknown rule action: {rule.action}", field="action", operation="validate_rule")
    if (rule.field == "custom") != bool(rule.custom_field):
        raise ValidationError(
            "custom_field is required for custom rules and not allowed otherwise",
            field="custom_field",
            operation="validate_rule",
        )
    if rule.value is None or not str(rule.value).strip():
        raise ValidationError("Rule value is required", field="value", operation="validate_rule")
    if rule.operator in _NUMERIC_OPERATORS and _to_decimal(rule.value) is None:
        raise ValidationError(
            f"Rule value must be numeric for {rule.operator}: {rule.value!r}",
            field="value",
            operation="validate_rule",
        )
    return rule


def field_value(meeting: Meeting, rule: QualificationRule) -> Any:
    """Read the attribute a rule targets; empty values count as missing."""
    if rule.field == "custom":
        if not rule.custom_field:
            return None
        value = (meeting.form_data or {}).get(rule.custom_field)
    else:
        value = getattr(meeting, rule.field, None)

    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _rule_label(rule: QualificationRule) -> str:
    if rule.field == "custom":
        return rule.custom_field or "custom"
    return rule.field


def _matches(rule: QualificationRule, value: Any) -> bool:
    if rule.operator in _NUMERIC_OPERATORS:
        left = _to_decimal(value)
        right = _to_decimal(rule.value)
        if left is None or right is None:
            return False
        return left >= right if rule.operator == "gte" else left <= right

    if rule.value is None:
        return False
    expected = _string_form(rule.value)

    if rule.operator == "eq":
        return _string_form(value) == expected
    if rule.operator == "ne":
        return _string_form(value) != expected

    haystack = _string_form(value).casefold()
    needle = expected.casefold()
    if rule.operator == "contains":
        return needle in haystack
    if rule.operator == "not_contains":
        return needle not in haystack

    return False


def _to_decimal(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))

    try:
        parsed = Decimal(str(value).translate(_STRIP_CHARS))
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def _string_form(value: Any) -> str:
    if isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        return str(int(value))
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

"""
Rule evaluation for tenant-defined anomaly rules.

Pure functions with no I/O so they can back both the anomaly engine and
rule preview tooling. Comparison semantics are deliberately loose for the
numeric operators and strict for equality.
"""

import logging
import math
import re
from dataclasses import is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List

from banking_monitor.domain.models import (
    AnomalyRule,
    FlagType,
    RuleAction,
    RuleCondition,
    Severity,
    Transaction,
)

logger = logging.getLogger(__name__)


class ConditionOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    REGEX = "regex"
    BETWEEN = "between"


class _Missing:
    """Marker for a field path that does not resolve"""

    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")
_DECIMAL_LITERAL = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_PREFIXED_LITERAL = re.compile(r"^0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")
_INFINITY = {"Infinity": math.inf, "+Infinity": math.inf, "-Infinity": -math.inf}


def evaluate_rule(rule: AnomalyRule, transaction: Transaction) -> bool:
    """All conditions must match (AND). A rule without conditions always fires."""
    return all(evaluate_condition(condition, transaction) for condition in rule.conditions)


def evaluate_condition(condition: RuleCondition, transaction: Transaction) -> bool:
    try:
        operator = ConditionOperator(condition.operator)
    except ValueError:
        return False

    field_value = resolve_field(transaction, condition.field)
    value = condition.value

    if operator is ConditionOperator.EQ:
        return _strict_equals(field_value, value)
    elif operator is ConditionOperator.NEQ:
        return not _strict_equals(field_value, value)
    elif operator is ConditionOperator.GT:
        return _to_number(field_value) > _to_number(value)
    elif operator is ConditionOperator.GTE:
        return _to_number(field_value) >= _to_number(value)
    elif operator is ConditionOperator.LT:
        return _to_number(field_value) < _to_number(value)
    elif operator is ConditionOperator.LTE:
        return _to_number(field_value) <= _to_number(value)
    elif operator is ConditionOperator.CONTAINS:
        return _stringify(value).lower() in _stringify(field_value).lower()
    elif operator is ConditionOperator.NOT_CONTAINS:
        return _stringify(value).lower() not in _stringify(field_value).lower()
    elif operator is ConditionOperator.IN:
        return isinstance(value, list) and any(_strict_equals(field_value, item) for item in value)
    elif operator is ConditionOperator.NOT_IN:
        return isinstance(value, list) and not any(_strict_equals(field_value, item) for item in value)
    elif operator is ConditionOperator.REGEX:
        try:
            return re.search(_stringify(value), _stringify(field_value), re.IGNORECASE) is not None
        except re.error as e:
            logger.warning("Invalid rule pattern", extra={"pattern": _stringify(value), "error": str(e)})
            return False
    elif operator is ConditionOperator.BETWEEN:
        if isinstance(value, list) and len(value) == 2:
            number = _to_number(field_value)
            return _to_number(value[0]) <= number <= _to_number(value[1])
        return False
    return False


def resolve_field(obj: Any, path: str) -> Any:
    """
    Walk a dot path through attributes and mapping keys.

    Segments may be camelCase ("counterpartyIban") or snake_case. Returns
    MISSING when the path breaks on a None or absent intermediate.
    """
    value = obj
    for part in path.split("."):
        if value is None or value is MISSING:
            return MISSING
        value = _lookup(value, part)
    return value


def _lookup(value: Any, part: str) -> Any:
    candidates = [part, _CAMEL_BOUNDARY.sub("_", part).lower()]
    for name in candidates:
        if isinstance(value, dict):
            if name in value:
                return value[name]
        elif is_dataclass(value) and hasattr(value, name):
            return getattr(value, name)
    return MISSING


def _unwrap(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _strict_equals(left: Any, right: Any) -> bool:
    left, right = _unwrap(left), _unwrap(right)
    if left is MISSING or right is MISSING:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float, Decimal)) and isinstance(right, (int, float, Decimal)):
        return float(left) == float(right)
    if isinstance(left, str) != isinstance(right, str):
        return False
    return left == right


def _to_number(value: Any) -> float:
    value = _unwrap(value)
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _DECIMAL_LITERAL.match(text):
            return float(text)
        if text in _INFINITY:
            return _INFINITY[text]
        if _PREFIXED_LITERAL.match(text):
            return float(int(text, 0))
        # Underscore separators, "inf" and "nan" are not numeric literals
        return math.nan
    return math.nan


def _stringify(value: Any) -> str:
    value = _unwrap(value)
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, list):
        return ",".join(_stringify(item) for item in value)
    return str(value)


def default_rules() -> List[AnomalyRule]:
    """Global starter rules offered to every tenant"""
    return [
        AnomalyRule(
            id="default:large_transaction",
            name="Transactions above 50,000 EUR",
            description="Alert on transactions above 50,000 EUR",
            type=FlagType.UNUSUAL_AMOUNT,
            severity=Severity.HIGH,
            conditions=[RuleCondition(field="amount", operator="gt", value=50000)],
            actions=[RuleAction(type="alert")],
        ),
        AnomalyRule(
            id="default:large_international",
            name="Large international transactions",
            description="International transactions above 10,000 EUR",
            type=FlagType.HIGH_RISK_COUNTRY,
            severity=Severity.MEDIUM,
            conditions=[
                RuleCondition(field="amount", operator="gt", value=10000),
                RuleCondition(field="counterpartyIban", operator="regex", value="^(?!ES)"),
            ],
            actions=[RuleAction(type="flag")],
        ),
        AnomalyRule(
            id="default:crypto_exchange",
            name="Crypto exchange payments",
            description="Payments to known cryptocurrency exchanges",
            type=FlagType.CATEGORY_MISMATCH,
            severity=Severity.MEDIUM,
            conditions=[
                RuleCondition(
                    field="counterpartyName",
                    operator="regex",
                    value="coinbase|binance|kraken|bitstamp|bitfinex|crypto",
                )
            ],
            actions=[RuleAction(type="flag")],
        ),
    ]

"""Unit tests for custom rule evaluation"""

from decimal import Decimal

import pytest

from banking_monitor.domain.models import AnomalyRule, FlagType, RuleCondition, Severity
from banking_monitor.domain.rules import MISSING, default_rules, evaluate_condition, evaluate_rule, resolve_field


def condition(field, operator, value):
    return RuleCondition(field=field, operator=operator, value=value)


def rule(*conditions):
    return AnomalyRule(
        id="rule-1",
        name="Test rule",
        description="Test rule fired",
        type=FlagType.UNUSUAL_AMOUNT,
        severity=Severity.HIGH,
        conditions=list(conditions),
    )


@pytest.mark.parametrize(
    "operator,value,expected",
    [
        ("gt", 100, True),
        ("gt", 120, False),
        ("gte", 120, True),
        ("lt", "200", True),
        ("lte", 119.99, False),
        ("eq", 120, True),
        ("eq", "120", False),
        ("neq", 121, True),
        ("between", [100, 120], True),
        ("between", [121, 200], False),
        ("between", [100], False),
    ],
)
def test_numeric_operators(make_transaction, operator, value, expected):
    tx = make_transaction(amount=Decimal("120.00"))
    assert evaluate_condition(condition("amount", operator, value), tx) is expected


@pytest.mark.parametrize(
    "operator,value,expected",
    [
        ("lt", " 1e3 ", True),
        ("between", [".5", "1.2e2"], True),
        ("lt", "Infinity", True),
        ("gt", "-Infinity", True),
        ("gt", "0x10", True),
        ("lt", "0b11111111", True),
        ("gt", "1_000", False),
        ("lt", "1_000", False),
        ("lt", "inf", False),
        ("gte", "nan", False),
        ("between", ["0", "1_000"], False),
    ],
)
def test_string_thresholds_follow_number_literals(make_transaction, operator, value, expected):
    """Strings that are not numeric literals compare as NaN and never match"""
    tx = make_transaction(amount=Decimal("120.00"))
    assert evaluate_condition(condition("amount", operator, value), tx) is expected


def test_contains_is_case_insensitive(make_transaction):
    tx = make_transaction(description="Pago a COINBASE Europe")
    assert evaluate_condition(condition("description", "contains", "coinbase"), tx)
    assert not evaluate_condition(condition("description", "not_contains", "Coinbase"), tx)


def test_contains_on_missing_field_stringifies(make_transaction):
    tx = make_transaction(merchant_name=None)
    assert evaluate_condition(condition("merchantName", "contains", "null"), tx)
    assert evaluate_condition(condition("nope", "contains", "undefined"), tx)


def test_in_and_not_in(make_transaction):
    tx = make_transaction(currency="USD")
    assert evaluate_condition(condition("currency", "in", ["USD", "GBP"]), tx)
    assert not evaluate_condition(condition("currency", "not_in", ["USD", "GBP"]), tx)
    # Non-list values never match either way
    assert not evaluate_condition(condition("currency", "in", "USD"), tx)
    assert not evaluate_condition(condition("currency", "not_in", "EUR"), tx)


def test_enum_fields_compare_by_value(make_transaction):
    tx = make_transaction()
    assert evaluate_condition(condition("direction", "eq", "debit"), tx)
    assert evaluate_condition(condition("status", "in", ["booked"]), tx)


def test_regex_case_insensitive_search(make_transaction):
    tx = make_transaction(counterparty_iban="ru0204452560040702810412345678901")
    assert evaluate_condition(condition("counterpartyIban", "regex", "^RU"), tx)
    assert not evaluate_condition(condition("counterpartyIban", "regex", "^(?!RU)"), tx)


def test_invalid_regex_is_false(make_transaction):
    assert not evaluate_condition(condition("description", "regex", "(unclosed"), make_transaction())


def test_unknown_operator_is_false(make_transaction):
    assert not evaluate_condition(condition("amount", "approximately", 120), make_transaction())


def test_numeric_operators_on_non_numeric_field_are_false(make_transaction):
    tx = make_transaction(description="abc")
    assert not evaluate_condition(condition("description", "gt", 0), tx)
    assert not evaluate_condition(condition("description", "lte", 0), tx)


def test_all_conditions_must_match(make_transaction):
    """AND semantics: one failing condition suppresses the rule"""
    tx = make_transaction(amount=Decimal("60000"), currency="EUR")
    matching = condition("amount", "gt", 50000)

    assert evaluate_rule(rule(matching, condition("currency", "eq", "EUR")), tx)
    assert not evaluate_rule(rule(matching, condition("currency", "eq", "USD")), tx)


def test_rule_without_conditions_always_fires(make_transaction):
    assert evaluate_rule(rule(), make_transaction())


def test_resolve_field_paths(make_transaction):
    tx = make_transaction()
    tx.metadata.bank_transaction_code = "PMNT"

    assert resolve_field(tx, "metadata.bankTransactionCode") == "PMNT"
    assert resolve_field(tx, "metadata.bank_transaction_code") == "PMNT"
    assert resolve_field(tx, "counterpartyName") == "Papeleria Sol"
    assert resolve_field(tx, "metadata.unknown") is MISSING
    assert resolve_field(tx, "reference.deeper") is MISSING
    assert resolve_field({"a": {"b": 1}}, "a.b") == 1


def test_default_rules(make_transaction):
    rules = {r.id: r for r in default_rules()}
    assert set(rules) == {"default:large_transaction", "default:large_international", "default:crypto_exchange"}
    assert all(r.tenant_id is None for r in rules.values())

    large_foreign = make_transaction(amount=Decimal("15000"), counterparty_iban="DE89370400440532013000")
    large_domestic = make_transaction(amount=Decimal("15000"), counterparty_iban="ES9121000418450200051332")
    assert evaluate_rule(rules["default:large_international"], large_foreign)
    assert not evaluate_rule(rules["default:large_international"], large_domestic)

    crypto = make_transaction(counterparty_name="Binance Ltd")
    assert evaluate_rule(rules["default:crypto_exchange"], crypto)
    assert not evaluate_rule(rules["default:large_transaction"], crypto)

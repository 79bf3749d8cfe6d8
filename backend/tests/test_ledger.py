import threading

import pytest

from fashionmuse.errors import InsufficientCredits, InvalidAmount, UnknownPlan, UserNotFound
from fashionmuse.schemas import TransactionType


def deductions(ledger, user_id):
    return [txn for txn in ledger.list_transactions(user_id) if txn.type == TransactionType.DEDUCTION]

# --- Scenario from sign-up to spending ---

def test_signup_deduct_add_deduct_scenario(ledger, alice):
    assert ledger.get_balance(alice.id) == 10

    with pytest.raises(InsufficientCredits) as exc_info:
        ledger.deduct_credits(alice.id, 15)
    assert exc_info.value.balance == 10
    assert exc_info.value.requested == 15
    assert ledger.get_balance(alice.id) == 10
    assert deductions(ledger, alice.id) == []

    assert ledger.add_credits(alice.id, 50) == 60
    assert ledger.get_balance(alice.id) == 60

    assert ledger.deduct_credits(alice.id, 15) == 45
    assert ledger.get_balance(alice.id) == 45
    recorded = deductions(ledger, alice.id)
    assert len(recorded) == 1
    assert recorded[0].amount == 15

def test_signup_grant_is_recorded_and_ledger_reconciles(ledger, alice):
    transactions = ledger.list_transactions(alice.id)
    assert len(transactions) == 1
    assert transactions[0].type == TransactionType.PURCHASE
    assert transactions[0].amount == 10

    ledger.add_credits(alice.id, 50)
    ledger.deduct_credits(alice.id, 7, reason="generation")
    ledger.refund_credits(alice.id, 3, reason="generation refund")
    reconciliation = ledger.reconcile(alice.id)
    assert reconciliation.balance == 56
    assert reconciliation.ledger_total == 56
    assert reconciliation.consistent

def test_transactions_newest_first(ledger, alice):
    ledger.add_credits(alice.id, 5, description="first")
    ledger.deduct_credits(alice.id, 2, reason="second")
    descriptions = [txn.description for txn in ledger.list_transactions(alice.id)]
    assert descriptions == ["second", "first", "welcome credits"]

# --- Validation ---

@pytest.mark.parametrize("amount", [0, -5, 2.5, True, "10"])
def test_non_positive_or_non_integer_amounts_rejected(ledger, alice, amount):
    with pytest.raises(InvalidAmount):
        ledger.add_credits(alice.id, amount)
    with pytest.raises(InvalidAmount):
        ledger.deduct_credits(alice.id, amount)
    assert ledger.get_balance(alice.id) == 10
    assert len(ledger.list_transactions(alice.id)) == 1

def test_exact_balance_can_be_spent_to_zero(ledger, alice):
    assert ledger.deduct_credits(alice.id, 10) == 0
    with pytest.raises(InsufficientCredits):
        ledger.deduct_credits(alice.id, 1)
    assert ledger.get_balance(alice.id) == 0

def test_add_cannot_record_a_deduction(ledger, alice):
    with pytest.raises(ValueError):
        ledger.add_credits(alice.id, 5, transaction_type=TransactionType.DEDUCTION)
    assert ledger.get_balance(alice.id) == 10

# --- Unknown users ---

def test_balance_of_unknown_user_is_zero(ledger, caplog):
    with caplog.at_level("WARNING", logger="fashionmuse.ledger"):
        assert ledger.get_balance("user_missing") == 0
    assert "unknown user" in caplog.text

def test_mutations_on_unknown_user_raise(ledger):
    with pytest.raises(UserNotFound):
        ledger.add_credits("user_missing", 5)
    with pytest.raises(UserNotFound):
        ledger.deduct_credits("user_missing", 5)
    with pytest.raises(UserNotFound):
        ledger.reconcile("user_missing")
    assert ledger.list_transactions("user_missing") == []

# --- Plans ---

def test_purchase_plan_adds_plan_credits(ledger, alice):
    assert ledger.purchase_credits(alice.id, "pro") == 60
    latest = ledger.list_transactions(alice.id)[0]
    assert latest.type == TransactionType.PURCHASE
    assert latest.amount == 50
    assert latest.description == "purchase:pro"

def test_purchase_unknown_plan_raises(ledger, alice):
    with pytest.raises(UnknownPlan):
        ledger.purchase_credits(alice.id, "platinum")
    assert ledger.get_balance(alice.id) == 10

def test_has_sufficient_credits(ledger, alice):
    assert ledger.has_sufficient_credits(alice.id, 10)
    assert not ledger.has_sufficient_credits(alice.id, 11)
    assert not ledger.has_sufficient_credits("user_missing", 1)

# --- Concurrency ---

def run_concurrently(worker, count):
    barrier = threading.Barrier(count)
    results = [None] * count

    def run(index):
        barrier.wait()
        try:
            results[index] = worker()
        except Exception as e:
            results[index] = e

    threads = [threading.Thread(target=run, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results

def test_concurrent_overdraw_leaves_exactly_one_winner(ledger, alice):
    results = run_concurrently(lambda: ledger.deduct_credits(alice.id, 6), count=5)

    winners = [result for result in results if isinstance(result, int)]
    losers = [result for result in results if isinstance(result, InsufficientCredits)]
    assert winners == [4]
    assert len(losers) == 4
    assert ledger.get_balance(alice.id) == 4
    assert len(deductions(ledger, alice.id)) == 1

def test_concurrent_small_deductions_never_go_negative(ledger, alice):
    results = run_concurrently(lambda: ledger.deduct_credits(alice.id, 1), count=15)

    assert sum(isinstance(result, int) for result in results) == 10
    assert sum(isinstance(result, InsufficientCredits) for result in results) == 5
    assert ledger.get_balance(alice.id) == 0
    assert ledger.reconcile(alice.id).consistent

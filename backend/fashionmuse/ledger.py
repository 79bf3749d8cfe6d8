import logging
from typing import Dict, List

from . import crud
from .database import Store
from .errors import InsufficientCredits, InvalidAmount, UnknownPlan, UserNotFound
from .schemas import CreditPlan, LedgerReconciliation, TransactionResponse, TransactionType

logger = logging.getLogger(__name__)

CREDIT_PLANS: Dict[str, CreditPlan] = {
    plan.id: plan
    for plan in (
        CreditPlan(id="starter", name="Starter", credits=10, price=4.99),
        CreditPlan(id="pro", name="Pro", credits=50, price=19.99),
        CreditPlan(id="ultimate", name="Ultimate", credits=150, price=49.99),
    )
}


def _validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(amount)
    return amount


class CreditLedger:
    """
    The users.credits balance plus the append-only transaction log that explains it.

    Every mutation changes the balance and appends its transaction row in the same
    database transaction. Debits are a single conditional UPDATE, so concurrent
    deductions cannot overdraw or lose an update.
    """

    def __init__(self, store: Store):
        self.store = store

    def get_balance(self, user_id: str) -> int:
        """Current balance; 0 for an unknown user."""
        with self.store.session() as db:
            credits = crud.get_credits(db, user_id)
        if credits is None:
            logger.warning(f"Balance requested for unknown user '{user_id}', reporting 0.")
            return 0
        return credits

    def has_sufficient_credits(self, user_id: str, amount: int) -> bool:
        return self.get_balance(user_id) >= amount

    def add_credits(
        self,
        user_id: str,
        amount: int,
        description: str = "purchase",
        transaction_type: TransactionType = TransactionType.PURCHASE,
    ) -> int:
        _validate_amount(amount)
        transaction_type = TransactionType(transaction_type)
        if transaction_type == TransactionType.DEDUCTION:
            raise ValueError("add_credits cannot record a deduction")
        with self.store.transaction() as db:
            new_balance = crud.increment_credits(db, user_id, amount)
            if new_balance is None:
                raise UserNotFound(user_id)
            crud.create_transaction(db, user_id, amount, transaction_type, description)
        logger.info(f"Added {amount} credits to user '{user_id}' ({transaction_type.value}: {description}). Balance: {new_balance}")
        return new_balance

    def refund_credits(self, user_id: str, amount: int, reason: str = "refund") -> int:
        return self.add_credits(user_id, amount, description=reason, transaction_type=TransactionType.REFUND)

    def deduct_credits(self, user_id: str, amount: int, reason: str = "generation") -> int:
        _validate_amount(amount)
        with self.store.transaction() as db:
            new_balance = crud.decrement_credits_if_sufficient(db, user_id, amount)
            if new_balance is None:
                balance = crud.get_credits(db, user_id)
                if balance is None:
                    raise UserNotFound(user_id)
                logger.info(f"Deduction of {amount} refused for user '{user_id}': balance {balance}.")
                raise InsufficientCredits(user_id, balance, amount)
            crud.create_transaction(db, user_id, amount, TransactionType.DEDUCTION, reason)
        logger.info(f"Deducted {amount} credits from user '{user_id}' ({reason}). Balance: {new_balance}")
        return new_balance

    def purchase_credits(self, user_id: str, plan_id: str) -> int:
        """
        Credits a catalogue plan. Payment is handled outside the core; this only
        records the grant with description ``purchase:<plan_id>``.
        """
        plan = CREDIT_PLANS.get(plan_id)
        if plan is None:
            raise UnknownPlan(plan_id)
        logger.info(f"Purchase: plan '{plan.id}', {plan.credits} credits for ${plan.price} (user '{user_id}').")
        return self.add_credits(user_id, plan.credits, description=f"purchase:{plan.id}")

    def list_transactions(self, user_id: str) -> List[TransactionResponse]:
        with self.store.session() as db:
            rows = crud.get_transactions_by_user(db, user_id)
            return [TransactionResponse.model_validate(row) for row in rows]

    def reconcile(self, user_id: str) -> LedgerReconciliation:
        with self.store.session() as db:
            balance = crud.get_credits(db, user_id)
            if balance is None:
                raise UserNotFound(user_id)
            total = 0
            for row in crud.get_transactions_by_user(db, user_id):
                total += -row.amount if row.type == TransactionType.DEDUCTION.value else row.amount
        return LedgerReconciliation(user_id=user_id, balance=balance, ledger_total=total)

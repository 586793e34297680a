from datetime import date

import pytest

from helpers import add_users
from schemas import BudgetIn, GroupIn
from services import BudgetService, Forbidden, GroupService, NotFound, ValidationFailed


def test_personal_budget_crud(db) -> None:
    add_users(db, "alice")
    service = BudgetService(db, "alice")

    budget = service.create(
        BudgetIn(amount=50000, purpose="  Groceries ", date=date(2025, 4, 1))
    )
    assert budget.purpose == "Groceries"
    assert budget.user_id == "alice"
    assert budget.group_id is None

    updated = service.update(
        budget.id, BudgetIn(amount=60000, purpose="Groceries", date=date(2025, 4, 1))
    )
    assert updated.amount == 60000
    assert updated.version == 2

    service.delete(budget.id)
    assert service.list() == []


def test_blank_purpose_is_rejected(db) -> None:
    add_users(db, "alice")

    with pytest.raises(ValidationFailed, match="Purpose"):
        BudgetService(db, "alice").create(
            BudgetIn(amount=1000, purpose="   ", date=date(2025, 4, 1))
        )


def test_personal_budgets_belong_to_their_creator(db) -> None:
    add_users(db, "alice", "bob")
    budget = BudgetService(db, "alice").create(
        BudgetIn(amount=1000, purpose="Books", date=date(2025, 4, 1))
    )

    assert BudgetService(db, "bob").list() == []
    with pytest.raises(NotFound):
        BudgetService(db, "bob").delete(budget.id)


def test_group_budgets_are_shared_with_members_only(db) -> None:
    add_users(db, "alice", "mallory")
    group = GroupService(db, "alice").create(GroupIn(name="Home"))
    service = BudgetService(db, "alice")
    budget = service.create(
        BudgetIn(amount=80000, purpose="Rent", date=date(2025, 4, 1)), group.id
    )

    assert [b.id for b in service.list(group.id)] == [budget.id]
    assert service.list() == []
    with pytest.raises(Forbidden):
        BudgetService(db, "mallory").list(group.id)

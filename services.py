from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload, selectinload

from config import get_settings
from models import (
    Budget,
    Category,
    CategoryType,
    Expense,
    Group,
    GroupRole,
    Income,
    User,
    UserGroup,
)
from periods import Period, day_period, month_period, today, trailing_months, year_period
from schemas import BudgetIn, ExpenseIn, GroupIn, IncomeIn, InviteIn

logger = logging.getLogger(__name__)


class ValidationFailed(ValueError):
    pass


class Forbidden(ValueError):
    pass


class NotFound(ValueError):
    pass


class Conflict(ValueError):
    pass


def display_name_for(
    email: str,
    name: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> str:
    full_name = (metadata or {}).get("full_name")
    for candidate in (full_name, name):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    local_part = (email or "").split("@", 1)[0].strip()
    return local_part or "Unknown User"


def expense_ratio(total_income: int, total_expense: int) -> int:
    """Percentage of income spent, rounded half up; 0 when there is no income."""
    if total_income <= 0:
        return 0
    ratio = Decimal(total_expense) * 100 / Decimal(total_income)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _check_amount(amount: int) -> None:
    if amount <= 0:
        raise ValidationFailed("Amount must be greater than zero")


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def get_or_create(
        self,
        external_id: str,
        email: str,
        name: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> User:
        user = self.session.get(User, external_id)
        if user:
            return user
        user = User(id=external_id, name=display_name_for(email, name, metadata))
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_created: id={user.id}")
        return user


class GroupService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def require_membership(
        self, group_id: str, user_id: Optional[str] = None
    ) -> UserGroup:
        user_id = user_id or self.user_id
        membership = self.session.get(UserGroup, (user_id, group_id))
        if not membership:
            logger.info(f"membership_denied: user={user_id} group={group_id}")
            raise Forbidden("You do not have access to this group")
        return membership

    def create(self, data: GroupIn) -> Group:
        name = data.name.strip()
        if not name:
            raise ValidationFailed("Group name is required")
        UserService(self.session).get(self.user_id)
        group = Group(name=name)
        group.users.append(UserGroup(user_id=self.user_id, role=GroupRole.admin))
        self.session.add(group)
        self.session.commit()
        self.session.refresh(group)
        logger.info(f"group_created: id={group.id} admin={self.user_id}")
        return group

    def list_for_user(self, user_id: str) -> list[Group]:
        if user_id != self.user_id:
            raise Forbidden("You can only list your own groups")
        stmt = (
            select(Group)
            .join(UserGroup, UserGroup.group_id == Group.id)
            .options(selectinload(Group.users))
            .where(UserGroup.user_id == user_id)
            .order_by(Group.created_at, Group.id)
        )
        return self.session.scalars(stmt).all()

    def invite(self, group_id: str, data: InviteIn) -> UserGroup:
        membership = self.require_membership(group_id)
        if (
            get_settings().invite_requires_admin
            and membership.role != GroupRole.admin
        ):
            raise Forbidden("Only group admins can invite members")
        UserService(self.session).get(data.user_id)
        if self.session.get(UserGroup, (data.user_id, group_id)):
            raise ValidationFailed("User is already a member of this group")
        invited = UserGroup(user_id=data.user_id, group_id=group_id, role=data.role)
        self.session.add(invited)
        self.session.commit()
        self.session.refresh(invited)
        logger.info(
            f"member_invited: group={group_id} user={data.user_id} "
            f"role={data.role.value} by={self.user_id}"
        )
        return invited

    def members(self, group_id: str) -> list[UserGroup]:
        self.require_membership(group_id)
        stmt = (
            select(UserGroup)
            .options(joinedload(UserGroup.user))
            .where(UserGroup.group_id == group_id)
            .order_by(UserGroup.created_at, UserGroup.user_id)
        )
        return self.session.scalars(stmt).all()


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, type: Optional[CategoryType] = None) -> list[Category]:
        stmt = select(Category).order_by(Category.name, Category.id)
        if type is not None:
            stmt = stmt.where(Category.type == type)
        return self.session.scalars(stmt).all()

    def require(self, category_id: str, type: CategoryType) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.type != type:
            raise ValidationFailed("Invalid category")
        return category


class ScopedEntryService:
    """CRUD over rows that live either in a user's personal ledger or in a group.

    Personal scope means ``user_id`` is the caller and ``group_id`` is NULL.
    Group scope means ``group_id`` matches and the caller holds a membership;
    membership is always checked before the target row is looked up.
    """

    model: Any = None
    label = "Entry"

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _authorize(self, group_id: Optional[str]) -> None:
        if group_id is not None:
            GroupService(self.session, self.user_id).require_membership(group_id)

    def _scope(self, stmt, group_id: Optional[str]):
        if group_id is None:
            return stmt.where(
                self.model.user_id == self.user_id, self.model.group_id.is_(None)
            )
        return stmt.where(self.model.group_id == group_id)

    def _options(self, group_id: Optional[str]) -> list:
        return []

    def _validate(self, data) -> None:
        _check_amount(data.amount)

    def _apply(self, entry, data) -> None:
        raise NotImplementedError

    def _find(self, entry_id: str, group_id: Optional[str]):
        stmt = self._scope(
            select(self.model)
            .options(*self._options(group_id))
            .where(self.model.id == entry_id),
            group_id,
        )
        # Reloads relationships of an entry already held by the session.
        entry = self.session.scalar(stmt.execution_options(populate_existing=True))
        if not entry:
            raise NotFound(f"{self.label} not found")
        return entry

    def list(self, group_id: Optional[str] = None) -> list:
        self._authorize(group_id)
        stmt = self._scope(
            select(self.model).options(*self._options(group_id)), group_id
        ).order_by(self.model.date.desc(), self.model.created_at.desc())
        return self.session.scalars(stmt).all()

    def get(self, entry_id: str, group_id: Optional[str] = None):
        self._authorize(group_id)
        return self._find(entry_id, group_id)

    def create(self, data, group_id: Optional[str] = None):
        self._authorize(group_id)
        self._validate(data)
        entry = self.model(user_id=self.user_id, group_id=group_id, version=1)
        self._apply(entry, data)
        self.session.add(entry)
        self.session.commit()
        logger.info(
            f"{self.label.lower()}_created: id={entry.id} "
            f"user={self.user_id} group={group_id}"
        )
        return self._find(entry.id, group_id)

    def update(self, entry_id: str, data, group_id: Optional[str] = None):
        self._authorize(group_id)
        _check_amount(data.amount)
        entry = self._find(entry_id, group_id)
        self._validate(data)
        if data.version is not None and data.version != entry.version:
            raise Conflict(f"{self.label} was modified by another request")
        self._apply(entry, data)
        entry.version += 1
        self.session.commit()
        return self._find(entry.id, group_id)

    def delete(self, entry_id: str, group_id: Optional[str] = None) -> None:
        self._authorize(group_id)
        entry = self._find(entry_id, group_id)
        self.session.delete(entry)
        self.session.commit()
        logger.info(
            f"{self.label.lower()}_deleted: id={entry_id} "
            f"user={self.user_id} group={group_id}"
        )


class LedgerService(ScopedEntryService):
    category_type = CategoryType.income
    note_field = "memo"

    def _options(self, group_id: Optional[str]) -> list:
        options = [joinedload(self.model.category)]
        if group_id is not None:
            options.append(joinedload(self.model.user))
        return options

    def _validate(self, data) -> None:
        _check_amount(data.amount)
        CategoryService(self.session).require(data.category_id, self.category_type)

    def _apply(self, entry, data) -> None:
        entry.category_id = data.category_id
        entry.amount = data.amount
        entry.date = data.date
        setattr(entry, self.note_field, getattr(data, self.note_field))


class IncomeService(LedgerService):
    model = Income
    label = "Income"
    category_type = CategoryType.income
    note_field = "memo"

    def create(self, data: IncomeIn, group_id: Optional[str] = None) -> Income:
        return super().create(data, group_id)

    def update(
        self, entry_id: str, data: IncomeIn, group_id: Optional[str] = None
    ) -> Income:
        return super().update(entry_id, data, group_id)


class ExpenseService(LedgerService):
    model = Expense
    label = "Expense"
    category_type = CategoryType.expense
    note_field = "description"

    def create(self, data: ExpenseIn, group_id: Optional[str] = None) -> Expense:
        return super().create(data, group_id)

    def update(
        self, entry_id: str, data: ExpenseIn, group_id: Optional[str] = None
    ) -> Expense:
        return super().update(entry_id, data, group_id)


class BudgetService(ScopedEntryService):
    model = Budget
    label = "Budget"

    def _validate(self, data: BudgetIn) -> None:
        _check_amount(data.amount)
        if not data.purpose or not data.purpose.strip():
            raise ValidationFailed("Purpose is required")

    def _apply(self, entry: Budget, data: BudgetIn) -> None:
        entry.amount = data.amount
        entry.purpose = data.purpose.strip()
        entry.date = data.date


class SummaryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _authorize(self, group_id: Optional[str]) -> None:
        if group_id is not None:
            GroupService(self.session, self.user_id).require_membership(group_id)

    def _ledger_conditions(self, model, period: Period, group_id: Optional[str]):
        conditions = [model.date.between(period.start, period.end)]
        if group_id is None:
            conditions.extend([model.user_id == self.user_id, model.group_id.is_(None)])
        else:
            conditions.append(model.group_id == group_id)
        return conditions

    def _totals(self, model, conditions) -> tuple[int, int]:
        row = self.session.execute(
            select(
                func.coalesce(func.sum(model.amount), 0), func.count(model.id)
            ).where(*conditions)
        ).one()
        return int(row[0] or 0), int(row[1] or 0)

    def _by_category(
        self, model, conditions, category_type: CategoryType
    ) -> list[dict[str, object]]:
        rows = self.session.execute(
            select(
                model.category_id,
                func.sum(model.amount).label("amount"),
                func.count(model.id).label("count"),
            )
            .where(*conditions)
            .group_by(model.category_id)
        ).all()
        names: dict[str, str] = {}
        category_ids = [row.category_id for row in rows]
        if category_ids:
            names = {
                row.id: row.name
                for row in self.session.execute(
                    select(Category.id, Category.name).where(
                        Category.id.in_(category_ids), Category.type == category_type
                    )
                )
            }
        breakdown = [
            {
                "categoryId": row.category_id,
                "categoryName": names.get(row.category_id, "Unknown"),
                "amount": int(row.amount or 0),
                "count": int(row.count or 0),
            }
            for row in rows
        ]
        breakdown.sort(key=lambda item: (-int(item["amount"]), str(item["categoryId"])))
        return breakdown

    def _summarize(self, period: Period, group_id: Optional[str]) -> dict[str, object]:
        income_conditions = self._ledger_conditions(Income, period, group_id)
        expense_conditions = self._ledger_conditions(Expense, period, group_id)
        # Budgets are scoped by group alone, even for the personal ledger.
        budget_conditions = [
            Budget.date.between(period.start, period.end),
            Budget.group_id == group_id if group_id else Budget.group_id.is_(None),
        ]

        total_income, income_count = self._totals(Income, income_conditions)
        total_expense, expense_count = self._totals(Expense, expense_conditions)
        total_budget, budget_count = self._totals(Budget, budget_conditions)

        return {
            "summary": {
                "totalIncome": total_income,
                "totalExpense": total_expense,
                "totalBudget": total_budget,
                "netIncome": total_income - total_expense,
                "expenseRatio": expense_ratio(total_income, total_expense),
                "incomeCount": income_count,
                "expenseCount": expense_count,
                "budgetCount": budget_count,
            },
            "incomeByCategory": self._by_category(
                Income, income_conditions, CategoryType.income
            ),
            "expenseByCategory": self._by_category(
                Expense, expense_conditions, CategoryType.expense
            ),
        }

    def summarize(
        self, period: Period, group_id: Optional[str] = None
    ) -> dict[str, object]:
        self._authorize(group_id)
        return self._summarize(period, group_id)

    def daily(
        self, target: Optional[date] = None, group_id: Optional[str] = None
    ) -> dict[str, object]:
        self._authorize(group_id)
        period = day_period(target)
        result: dict[str, object] = {
            "period": "daily",
            "date": period.start.date().isoformat(),
        }
        if group_id:
            result["groupId"] = group_id
        result.update(self._summarize(period, group_id))
        return result

    def monthly(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        group_id: Optional[str] = None,
    ) -> dict[str, object]:
        self._authorize(group_id)
        current = today()
        if year is None:
            year = current.year
        if month is None:
            month = current.month
        try:
            period = month_period(year, month)
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc
        result: dict[str, object] = {"period": "monthly", "year": year, "month": month}
        if group_id:
            result["groupId"] = group_id
        result.update(self._summarize(period, group_id))
        return result

    def yearly(
        self, year: Optional[int] = None, group_id: Optional[str] = None
    ) -> dict[str, object]:
        self._authorize(group_id)
        if year is None:
            year = today().year
        try:
            period = year_period(year)
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc
        result: dict[str, object] = {"period": "yearly", "year": year}
        if group_id:
            result["groupId"] = group_id
        result.update(self._summarize(period, group_id))
        return result

    def trend(
        self, current: Optional[date] = None, group_id: Optional[str] = None
    ) -> dict[str, object]:
        self._authorize(group_id)
        trends = []
        for year, month in trailing_months(current, 12):
            data = self._summarize(month_period(year, month), group_id)
            trends.append(
                {
                    "year": year,
                    "month": month,
                    "label": f"{year}年{month}月",
                    **data["summary"],
                }
            )
        result: dict[str, object] = {"trends": trends}
        if group_id:
            result["groupId"] = group_id
        return result

import datetime as dt
from typing import Any, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from config import get_settings
from models import CategoryType, GroupRole


class ApiModel(BaseModel):
    """Base for request and response bodies; JSON keys are camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def _coerce_entry_date(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time.min)
    if isinstance(value, str) and len(value.strip()) == 10:
        return dt.datetime.combine(dt.date.fromisoformat(value.strip()), dt.time.min)
    return value


def _to_local_naive(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value
    zone = ZoneInfo(get_settings().timezone)
    return value.astimezone(zone).replace(tzinfo=None)


class EntryIn(ApiModel):
    amount: int
    date: dt.datetime
    version: Optional[int] = None

    @field_validator("date", mode="before")
    @classmethod
    def _date_only_is_midnight(cls, value: Any) -> Any:
        return _coerce_entry_date(value)

    @field_validator("date")
    @classmethod
    def _normalize_timezone(cls, value: dt.datetime) -> dt.datetime:
        return _to_local_naive(value)


class IncomeIn(EntryIn):
    category_id: str
    memo: Optional[str] = Field(default=None, max_length=500)


class ExpenseIn(EntryIn):
    category_id: str
    description: Optional[str] = Field(default=None, max_length=500)


class BudgetIn(EntryIn):
    purpose: str = Field(..., max_length=200)


class GroupIn(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)


class InviteIn(ApiModel):
    user_id: str = Field(..., min_length=1)
    role: GroupRole = GroupRole.member


class TokenUserIn(ApiModel):
    id: str = Field(..., min_length=1, max_length=64)
    email: str = Field(..., min_length=1)
    name: Optional[str] = None
    user_metadata: Optional[dict[str, Any]] = None


class TokenRequest(ApiModel):
    user: TokenUserIn


class UserOut(ApiModel):
    id: str
    name: str
    created_at: dt.datetime
    updated_at: dt.datetime


class CategoryOut(ApiModel):
    id: str
    name: str
    type: CategoryType
    created_at: dt.datetime
    updated_at: dt.datetime


class IncomeOut(ApiModel):
    id: str
    user_id: str
    group_id: Optional[str]
    category_id: str
    amount: int
    memo: Optional[str]
    date: dt.datetime
    version: int
    created_at: dt.datetime
    updated_at: dt.datetime
    category: CategoryOut


class GroupIncomeOut(IncomeOut):
    user: UserOut


class ExpenseOut(ApiModel):
    id: str
    user_id: str
    group_id: Optional[str]
    category_id: str
    amount: int
    description: Optional[str]
    date: dt.datetime
    version: int
    created_at: dt.datetime
    updated_at: dt.datetime
    category: CategoryOut


class GroupExpenseOut(ExpenseOut):
    user: UserOut


class BudgetOut(ApiModel):
    id: str
    group_id: Optional[str]
    user_id: Optional[str]
    amount: int
    purpose: str
    date: dt.datetime
    version: int
    created_at: dt.datetime
    updated_at: dt.datetime


class MembershipOut(ApiModel):
    user_id: str
    group_id: str
    role: GroupRole
    created_at: dt.datetime


class MemberOut(MembershipOut):
    user: UserOut


class GroupOut(ApiModel):
    id: str
    name: str
    created_at: dt.datetime
    updated_at: dt.datetime


class GroupWithMembersOut(GroupOut):
    users: list[MembershipOut]


class TokenOut(ApiModel):
    token: str
    user: UserOut


class AuthStatusOut(ApiModel):
    authenticated: bool
    user: Optional[UserOut] = None


class MessageOut(ApiModel):
    message: str

import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    ConfigurationError,
    Identity,
    clear_session_cookie,
    issue_token,
    optional_user,
    require_user,
    set_session_cookie,
)
from config import get_settings
from database import get_db
from models import CategoryType, User
from schemas import (
    AuthStatusOut,
    BudgetIn,
    BudgetOut,
    CategoryOut,
    ExpenseIn,
    ExpenseOut,
    GroupExpenseOut,
    GroupIn,
    GroupIncomeOut,
    GroupWithMembersOut,
    IncomeIn,
    IncomeOut,
    InviteIn,
    MemberOut,
    MembershipOut,
    MessageOut,
    TokenOut,
    TokenRequest,
)
from services import (
    BudgetService,
    CategoryService,
    Conflict,
    ExpenseService,
    Forbidden,
    GroupService,
    IncomeService,
    NotFound,
    SummaryService,
    UserService,
    ValidationFailed,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Wadake", version=APP_VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    if not get_settings().jwt_secret:
        logger.warning("startup: WADAKE_JWT_SECRET is not set")
    logger.info(f"startup: version={APP_VERSION}")


_DOMAIN_ERROR_STATUS = (
    (ValidationFailed, 400),
    (Forbidden, 403),
    (NotFound, 404),
    (Conflict, 409),
)


async def domain_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    status_code = next(
        status for error_cls, status in _DOMAIN_ERROR_STATUS if isinstance(exc, error_cls)
    )
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


for _error_cls, _ in _DOMAIN_ERROR_STATUS:
    app.add_exception_handler(_error_cls, domain_error_handler)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Missing or invalid fields", "details": details},
    )


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"configuration_error: path={request.url.path} {exc}")
    return JSONResponse(status_code=500, content={"error": "Server configuration error"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/health")
def health(db: Session = Depends(get_db)):
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error(f"health_check_failed: {exc}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "ERROR",
                "timestamp": timestamp,
                "database": "unreachable",
                "error": str(exc),
            },
        )
    return {"status": "OK", "timestamp": timestamp, "database": "connected"}


@app.post("/api/auth/token", response_model=TokenOut)
def issue_session_token(
    payload: TokenRequest, response: Response, db: Session = Depends(get_db)
):
    if not get_settings().jwt_secret:
        raise ConfigurationError("JWT secret is not configured")
    account = payload.user
    user = UserService(db).get_or_create(
        account.id, account.email, account.name, account.user_metadata
    )
    token = issue_token(user.id, account.email, user.name)
    set_session_cookie(response, token)
    logger.info(f"token_issued: user={user.id}")
    return {"token": token, "user": user}


@app.post("/api/auth/logout", response_model=MessageOut)
def logout(response: Response):
    clear_session_cookie(response)
    return {"message": "Logged out"}


@app.get("/api/auth/me", response_model=AuthStatusOut)
def auth_me(
    identity: Identity = Depends(require_user), db: Session = Depends(get_db)
):
    user = UserService(db).get(identity.id)
    return {"authenticated": True, "user": user}


@app.get("/api/auth/session", response_model=AuthStatusOut)
def auth_session(
    identity: Optional[Identity] = Depends(optional_user),
    db: Session = Depends(get_db),
):
    user = db.get(User, identity.id) if identity else None
    return {"authenticated": user is not None, "user": user}


@app.get("/api/auth/ping")
def auth_ping(identity: Identity = Depends(require_user)):
    return {"message": "pong", "user": {"id": identity.id, "name": identity.name}}


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    type: Optional[CategoryType] = None,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return CategoryService(db).list_all(type)


@app.get("/api/categories/income", response_model=list[CategoryOut])
def list_income_categories(
    identity: Identity = Depends(require_user), db: Session = Depends(get_db)
):
    return CategoryService(db).list_all(CategoryType.income)


@app.get("/api/categories/expense", response_model=list[CategoryOut])
def list_expense_categories(
    identity: Identity = Depends(require_user), db: Session = Depends(get_db)
):
    return CategoryService(db).list_all(CategoryType.expense)


@app.get("/api/incomes", response_model=list[IncomeOut])
def list_incomes(
    identity: Identity = Depends(require_user), db: Session = Depends(get_db)
):
    return IncomeService(db, identity.id).list()


@app.post("/api/incomes", response_model=IncomeOut, status_code=201)
def create_income(
    payload: IncomeIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return IncomeService(db, identity.id).create(payload)


@app.put("/api/incomes/{income_id}", response_model=IncomeOut)
def update_income(
    income_id: str,
    payload: IncomeIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return IncomeService(db, identity.id).update(income_id, payload)


@app.delete("/api/incomes/{income_id}", response_model=MessageOut)
def delete_income(
    income_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    IncomeService(db, identity.id).delete(income_id)
    return {"message": "Income deleted"}


@app.get("/api/expenses", response_model=list[ExpenseOut])
def list_expenses(
    identity: Identity = Depends(require_user), db: Session = Depends(get_db)
):
    return ExpenseService(db, identity.id).list()


@app.post("/api/expenses", response_model=ExpenseOut, status_code=201)
def create_expense(
    payload: ExpenseIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, identity.id).create(payload)


@app.put("/api/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: str,
    payload: ExpenseIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, identity.id).update(expense_id, payload)


@app.delete("/api/expenses/{expense_id}", response_model=MessageOut)
def delete_expense(
    expense_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    ExpenseService(db, identity.id).delete(expense_id)
    return {"message": "Expense deleted"}


@app.get("/api/budgets", response_model=list[BudgetOut])
def list_budgets(
    identity: Identity = Depends(require_user), db: Session = Depends(get_db)
):
    return BudgetService(db, identity.id).list()


@app.post("/api/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    payload: BudgetIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return BudgetService(db, identity.id).create(payload)


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: str,
    payload: BudgetIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return BudgetService(db, identity.id).update(budget_id, payload)


@app.delete("/api/budgets/{budget_id}", response_model=MessageOut)
def delete_budget(
    budget_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    BudgetService(db, identity.id).delete(budget_id)
    return {"message": "Budget deleted"}


@app.post("/api/groups", response_model=GroupWithMembersOut, status_code=201)
def create_group(
    payload: GroupIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return GroupService(db, identity.id).create(payload)


@app.get("/api/groups/user/{user_id}", response_model=list[GroupWithMembersOut])
def list_user_groups(
    user_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return GroupService(db, identity.id).list_for_user(user_id)


@app.post(
    "/api/groups/{group_id}/invite", response_model=MembershipOut, status_code=201
)
def invite_member(
    group_id: str,
    payload: InviteIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return GroupService(db, identity.id).invite(group_id, payload)


@app.get("/api/groups/{group_id}/members", response_model=list[MemberOut])
def list_group_members(
    group_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return GroupService(db, identity.id).members(group_id)


@app.get("/api/groups/{group_id}/incomes", response_model=list[GroupIncomeOut])
def list_group_incomes(
    group_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return IncomeService(db, identity.id).list(group_id)


@app.post(
    "/api/groups/{group_id}/incomes", response_model=GroupIncomeOut, status_code=201
)
def create_group_income(
    group_id: str,
    payload: IncomeIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return IncomeService(db, identity.id).create(payload, group_id)


@app.put("/api/groups/{group_id}/incomes/{income_id}", response_model=GroupIncomeOut)
def update_group_income(
    group_id: str,
    income_id: str,
    payload: IncomeIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return IncomeService(db, identity.id).update(income_id, payload, group_id)


@app.delete("/api/groups/{group_id}/incomes/{income_id}", response_model=MessageOut)
def delete_group_income(
    group_id: str,
    income_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    IncomeService(db, identity.id).delete(income_id, group_id)
    return {"message": "Income deleted"}


@app.get("/api/groups/{group_id}/expenses", response_model=list[GroupExpenseOut])
def list_group_expenses(
    group_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, identity.id).list(group_id)


@app.post(
    "/api/groups/{group_id}/expenses", response_model=GroupExpenseOut, status_code=201
)
def create_group_expense(
    group_id: str,
    payload: ExpenseIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, identity.id).create(payload, group_id)


@app.put(
    "/api/groups/{group_id}/expenses/{expense_id}", response_model=GroupExpenseOut
)
def update_group_expense(
    group_id: str,
    expense_id: str,
    payload: ExpenseIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return ExpenseService(db, identity.id).update(expense_id, payload, group_id)


@app.delete("/api/groups/{group_id}/expenses/{expense_id}", response_model=MessageOut)
def delete_group_expense(
    group_id: str,
    expense_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    ExpenseService(db, identity.id).delete(expense_id, group_id)
    return {"message": "Expense deleted"}


@app.get("/api/groups/{group_id}/budgets", response_model=list[BudgetOut])
def list_group_budgets(
    group_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return BudgetService(db, identity.id).list(group_id)


@app.post("/api/groups/{group_id}/budgets", response_model=BudgetOut, status_code=201)
def create_group_budget(
    group_id: str,
    payload: BudgetIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return BudgetService(db, identity.id).create(payload, group_id)


@app.put("/api/groups/{group_id}/budgets/{budget_id}", response_model=BudgetOut)
def update_group_budget(
    group_id: str,
    budget_id: str,
    payload: BudgetIn,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return BudgetService(db, identity.id).update(budget_id, payload, group_id)


@app.delete("/api/groups/{group_id}/budgets/{budget_id}", response_model=MessageOut)
def delete_group_budget(
    group_id: str,
    budget_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    BudgetService(db, identity.id).delete(budget_id, group_id)
    return {"message": "Budget deleted"}


@app.get("/api/summary/daily")
def daily_summary(
    target: Optional[date] = Query(default=None, alias="date"),
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return SummaryService(db, identity.id).daily(target, group_id)


@app.get("/api/summary/monthly")
def monthly_summary(
    year: Optional[int] = None,
    month: Optional[int] = None,
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return SummaryService(db, identity.id).monthly(year, month, group_id)


@app.get("/api/summary/yearly")
def yearly_summary(
    year: Optional[int] = None,
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return SummaryService(db, identity.id).yearly(year, group_id)


@app.get("/api/summary/trend")
def trend_summary(
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return SummaryService(db, identity.id).trend(group_id=group_id)


@app.post("/api/summary/groups/{group_id}/daily")
def group_daily_summary(
    group_id: str,
    target: Optional[date] = Query(default=None, alias="date"),
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return SummaryService(db, identity.id).daily(target, group_id)


@app.post("/api/summary/groups/{group_id}/monthly")
def group_monthly_summary(
    group_id: str,
    year: Optional[int] = None,
    month: Optional[int] = None,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return SummaryService(db, identity.id).monthly(year, month, group_id)


@app.post("/api/summary/groups/{group_id}/yearly")
def group_yearly_summary(
    group_id: str,
    year: Optional[int] = None,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return SummaryService(db, identity.id).yearly(year, group_id)


@app.post("/api/summary/groups/{group_id}/trend")
def group_trend_summary(
    group_id: str,
    identity: Identity = Depends(require_user),
    db: Session = Depends(get_db),
):
    return SummaryService(db, identity.id).trend(group_id=group_id)

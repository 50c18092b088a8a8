import logging
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from balances import chart_y_domain, split_balance_history
from config import get_settings
from database import SessionLocal, init_db, session_scope
from ledger import LedgerService
from periods import ChartPeriod, resolve_chart_window
from recurrence import local_now
from refresh import DashboardRefresher
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    BalanceHistoryOut,
    CategoryIn,
    ContoIn,
    ContoOut,
    DashboardOut,
    DashboardSelection,
    EntitySeriesOut,
    PeriodStatisticsOut,
    PeriodSummaryOut,
    SummaryOut,
    TransactionIn,
    TrailingSummaryOut,
    TransactionOut,
)
from services import (
    AccountService,
    CategoryService,
    ContoService,
    DashboardData,
    DashboardService,
    TransactionService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Finance History")


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


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _compute_dashboard(selection: DashboardSelection, now: datetime) -> DashboardData:
    with session_scope() as session:
        return DashboardService(session).load(selection, now)


scheduler_manager = SchedulerManager()
refresher = DashboardRefresher(
    _compute_dashboard, scheduler=scheduler_manager.scheduler
)


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _now(as_of: Optional[datetime]) -> datetime:
    return as_of or local_now()


@app.get("/api/version")
def api_version():
    return {"version": APP_VERSION}


@app.get("/api/accounts", response_model=list[AccountOut])
def list_accounts(db: Session = Depends(get_db)):
    return AccountService(db).list_all()


@app.post("/api/accounts", response_model=AccountOut, status_code=201)
def create_account(data: AccountIn, db: Session = Depends(get_db)):
    return AccountService(db).create(data)


@app.get("/api/accounts/{account_id}/balance")
def account_balance(
    account_id: int,
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    service = AccountService(db)
    try:
        account = service.get(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "account_id": account.id,
        "balance_cents": service.total_balance(account, _now(as_of)),
    }


@app.post("/api/accounts/{account_id}/conti", response_model=ContoOut, status_code=201)
def create_conto(account_id: int, data: ContoIn, db: Session = Depends(get_db)):
    try:
        return ContoService(db).create(account_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/conti/{conto_id}/balance")
def conto_balance(
    conto_id: int,
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    service = ContoService(db)
    try:
        conto = service.get(conto_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"conto_id": conto.id, "balance_cents": service.balance(conto, _now(as_of))}


@app.post("/api/categories", status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    category = CategoryService(db).create(data)
    return {"id": category.id, "name": category.name, "type": category.type.value}


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/transactions/{transaction_id}/delete", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).soft_delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/transactions/recent", response_model=list[TransactionOut])
def recent_transactions(
    conto_ids: list[int] = Query(default=[]),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return LedgerService(db).recent(conto_ids or None, limit=limit)


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    conto_ids: list[int] = Query(default=[]),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return TransactionService(db).list(
        start, end, conto_ids or None, limit=limit, offset=offset
    )


@app.get(
    "/api/transactions/{transaction_id}/duplicates",
    response_model=list[TransactionOut],
)
def transaction_duplicates(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).duplicates(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/balance-history", response_model=BalanceHistoryOut)
def balance_history_endpoint(
    conto_ids: list[int] = Query(default=[]),
    period: ChartPeriod = ChartPeriod.one_month,
    month: Optional[date] = None,
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    now = _now(as_of)
    window = resolve_chart_window(
        period,
        now=now,
        selected_month=month,
        lookback_months=get_settings().default_lookback_months,
    )
    service = DashboardService(db)
    points = service.reconstruct_balance_history(conto_ids, window.start, window.end)
    past, future = split_balance_history(points, now, window.end)
    return BalanceHistoryOut(
        period=period,
        start=window.start,
        end=window.end,
        points=points,
        past=past,
        future=future,
        y_domain=chart_y_domain(points),
    )


@app.get("/api/history/accounts", response_model=list[EntitySeriesOut])
def account_history(
    account_ids: list[int] = Query(default=[]),
    period: ChartPeriod = ChartPeriod.all,
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    months_back = period.lookback_months(get_settings().default_lookback_months)
    return DashboardService(db).account_history(account_ids, months_back, _now(as_of))


@app.get("/api/history/conti", response_model=list[EntitySeriesOut])
def conto_history(
    conto_ids: list[int] = Query(default=[]),
    period: ChartPeriod = ChartPeriod.all,
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    months_back = period.lookback_months(get_settings().default_lookback_months)
    return DashboardService(db).conto_history(conto_ids, months_back, _now(as_of))


@app.get("/api/summary", response_model=SummaryOut)
def summary(
    conto_ids: list[int] = Query(default=[]),
    month: Optional[date] = None,
    months: int = Query(3, ge=0, le=120),
    db: Session = Depends(get_db),
):
    month = month or local_now().date()
    service = DashboardService(db)
    return SummaryOut(
        current=PeriodSummaryOut.model_validate(
            service.summarize_period(conto_ids, month)
        ),
        trailing=TrailingSummaryOut.model_validate(
            service.trailing_summary(conto_ids, month, months)
        ),
        statistics=PeriodStatisticsOut.model_validate(
            service.period_statistics(conto_ids, month)
        ),
    )


@app.post("/api/dashboard/refresh", status_code=202)
def refresh_dashboard(selection: DashboardSelection):
    generation = refresher.request(selection)
    logger.info(f"dashboard_refresh_requested: generation={generation}")
    return {"generation": generation}


@app.get("/api/dashboard", response_model=DashboardOut)
def dashboard():
    latest = refresher.latest
    if latest is None:
        raise HTTPException(status_code=404, detail="Dashboard not loaded yet")
    return DashboardOut.model_validate(latest)

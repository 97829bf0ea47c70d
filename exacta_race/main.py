"""
FastAPI application for the exacta race engine
Thin HTTP wrapper over RaceEngine plus the scheduled race cycle
"""

from fastapi import FastAPI, Depends, Query, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional
import logging
import os
import threading

from exacta_race.auth import verify_api_key
from exacta_race.core.interfaces import ContextIdentity
from exacta_race.core.race_config import RaceConfig
from exacta_race.errors import (
    RaceError,
    NotOwnerError,
    LifecycleError,
    InvalidSelectionError,
    InvalidAmountError,
    InsufficientFundsError,
)
from exacta_race.models import SessionLocal, get_db, init_db
from exacta_race.schemas import (
    BalanceResponse,
    DepositRequest,
    OddsResponse,
    OwnerUpdate,
    ParticipantResponse,
    PayoutResponse,
    ProbabilityRow,
    RaceOutcomeResponse,
    RaceStatusResponse,
    StartRaceRequest,
    WagerCreate,
    WagerResponse,
    WithdrawRequest,
)
from exacta_race.services.audit import audit_report
from exacta_race.services.balances import SqlBalanceStore
from exacta_race.services.cycle import advance_cycle
from exacta_race.services.notifications import DBNotificationSink, FanoutSink, LoggingSink
from exacta_race.services.race import RaceEngine
from exacta_race.services.race_state import SqlRaceStateStore

# Logging setup
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()

# Caller identity bound per request; the engine reads it for owner checks
identity = ContextIdentity()

# The host serialises engine calls.  Routes that take it are plain `def`
# so they wait in the threadpool, not on the event loop.
_engine_lock = threading.Lock()
_engine: Optional[RaceEngine] = None


def load_race_config() -> RaceConfig:
    """Canonical field with phase timings from the environment."""
    return replace(
        RaceConfig.canonical(),
        betting_window_sec=int(float(os.getenv("RACE_BETTING_WINDOW_MIN", "14")) * 60),
        race_duration_sec=int(float(os.getenv("RACE_DURATION_MIN", "1")) * 60),
    )


def get_engine() -> RaceEngine:
    """Process-wide engine, resumed from the race state saved in the database."""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = RaceEngine(
                owner=os.getenv("RACE_OWNER", "user1"),
                identity=identity,
                store=SqlBalanceStore(SessionLocal),
                sink=FanoutSink([LoggingSink(), DBNotificationSink(SessionLocal)]),
                config=load_race_config(),
                state_store=SqlRaceStateStore(SessionLocal),
            )
        return _engine


def _as(user: str, fn, *args):
    """Run one engine operation as ``user``, serialised with every other call."""
    with _engine_lock, identity.acting_as(user):
        return fn(*args)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting exacta race engine")
    init_db()

    autocycle = os.getenv("RACE_AUTOCYCLE_ENABLED", "false").lower() == "true"
    interval = int(os.getenv("RACE_CYCLE_INTERVAL_SEC", "30"))
    if autocycle:
        scheduler.add_job(
            _race_cycle_job,
            IntervalTrigger(seconds=interval),
            id="race_cycle",
            name="Race Cycle",
            replace_existing=True,
        )
        logger.info("Race cycle scheduled every %ds", interval)

    scheduler.start()

    yield

    logger.info("Shutting down exacta race engine")
    scheduler.shutdown()


app = FastAPI(
    title="Exacta Race",
    description="Six-runner weighted race with exacta wagering",
    version="1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def _race_cycle_job():
    """Advance the race lifecycle when its timing gate allows."""
    engine = get_engine()
    try:
        with _engine_lock:
            advance_cycle(engine, lambda: identity.acting_as(engine.owner))
    except Exception as exc:
        logger.error("Race cycle job failed: %s", exc, exc_info=True)


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Health check"""
    return {
        "app": "Exacta Race",
        "version": "1.0",
        "status": "operational",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS - FIELD AND ODDS
# ============================================================================

# Field, odds and probabilities come from the immutable config, so these
# routes read the engine without taking the lock.

@app.get("/api/participants", response_model=List[ParticipantResponse])
def list_participants(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    return [p.to_dict() for p in engine.participants()]


@app.get("/api/participants/{participant_id}", response_model=ParticipantResponse)
def get_participant(
    participant_id: int,
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    participant = engine.participant(participant_id)
    if participant is None:
        raise HTTPException(status_code=404, detail="Participant not found")
    return participant.to_dict()


@app.get("/api/odds/table", response_model=List[ProbabilityRow])
def get_probability_table(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    """Probability and multiplier of every exacta that pays."""
    return [row.to_dict() for row in engine.probability_table()]


@app.get("/api/odds/audit")
def get_odds_audit(
    n_races: int = Query(default=2000, ge=1, le=50000),
    base_seed: int = Query(default=0, ge=0),
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    """Theoretical vs simulated exacta frequencies for the configured field."""
    return audit_report(engine.config, n_races=n_races, base_seed=base_seed, odds=engine.odds)


@app.get("/api/odds/{first}/{second}", response_model=OddsResponse)
def get_odds(
    first: int,
    second: int,
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    return OddsResponse(
        first=first,
        second=second,
        multiplier=engine.multiplier(first, second),
        probability=engine.probability(first, second),
    )


# ============================================================================
# AUTHENTICATED ENDPOINTS - RACE STATE
# ============================================================================

@app.get("/api/race", response_model=RaceStatusResponse)
def get_race_status(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    def _status():
        winners = engine.winners()
        return RaceStatusResponse(
            race_id=engine.race_id,
            state=engine.state.value,
            total_pot=engine.total_pot,
            wager_count=len(engine.wagers()),
            owner=engine.owner,
            current_seed=engine.current_seed,
            winners=list(winners) if winners else None,
        )

    return _as(user, _status)


@app.get("/api/race/latest", response_model=Optional[RaceOutcomeResponse])
def get_latest_outcome(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    latest = _as(user, engine.latest_outcome)
    return latest.to_dict() if latest else None


@app.get("/api/race/history", response_model=List[RaceOutcomeResponse])
def get_race_history(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    return [o.to_dict() for o in _as(user, engine.history)]


@app.get("/api/race/wagers", response_model=List[WagerResponse])
def get_wagers(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    return [w.to_dict() for w in _as(user, engine.wagers)]


@app.get("/api/race/payouts", response_model=List[PayoutResponse])
def get_payouts(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    return [p.to_dict() for p in _as(user, engine.payouts)]


# ============================================================================
# AUTHENTICATED ENDPOINTS - BALANCES AND WAGERS
# ============================================================================

@app.get("/api/balances/{account}", response_model=BalanceResponse)
def get_balance(
    account: str,
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    return BalanceResponse(account=account, balance=_as(user, engine.get_balance, account))


@app.post("/api/balances/deposit", response_model=BalanceResponse)
def deposit(
    payload: DepositRequest,
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    balance = _as(user, engine.deposit, payload.account, payload.amount)
    return BalanceResponse(account=payload.account, balance=balance)


@app.post("/api/balances/withdraw", response_model=BalanceResponse)
def withdraw(
    payload: WithdrawRequest,
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    balance = _as(user, engine.withdraw, payload.amount)
    return BalanceResponse(account=user, balance=balance)


@app.post("/api/wagers", response_model=WagerResponse)
def place_wager(
    payload: WagerCreate,
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    """Relay an exacta wager on behalf of ``payload.bettor`` (owner only)."""
    wager = _as(
        user, engine.place_wager,
        payload.bettor, payload.first_pick, payload.second_pick, payload.amount,
    )
    return wager.to_dict()


# ============================================================================
# ADMIN ENDPOINTS - LIFECYCLE
# ============================================================================

@app.post("/admin/race/start")
def start_race(
    payload: StartRaceRequest,
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    def _start():
        race_id = engine.start_race(payload.seed)
        return {"race_id": race_id, "state": engine.state.value, "seed": payload.seed}

    return _as(user, _start)


@app.post("/admin/race/run", response_model=RaceOutcomeResponse)
def run_race(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    return _as(user, engine.run_outcome).to_dict()


@app.post("/admin/race/settle", response_model=List[PayoutResponse])
def settle_race(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    return [p.to_dict() for p in _as(user, engine.settle)]


@app.post("/admin/race/reset")
def reset_race(
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    def _reset():
        engine.reset()
        return {"race_id": engine.race_id, "state": engine.state.value}

    return _as(user, _reset)


@app.post("/admin/owner")
def transfer_owner(
    payload: OwnerUpdate,
    user: str = Depends(verify_api_key),
    engine: RaceEngine = Depends(get_engine),
):
    def _transfer():
        engine.set_owner(payload.new_owner)
        return {"owner": engine.owner}

    return _as(user, _transfer)


@app.get("/admin/scheduler/status")
async def get_scheduler_status(user: str = Depends(verify_api_key)):
    """Get scheduler job status"""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        })

    return {
        "running": scheduler.running,
        "jobs": jobs,
    }


# ============================================================================
# ERROR HANDLERS
# ============================================================================

_ERROR_STATUS = (
    (NotOwnerError, 403),
    (LifecycleError, 409),
    (InvalidSelectionError, 422),
    (InvalidAmountError, 422),
    (InsufficientFundsError, 402),
)


@app.exception_handler(RaceError)
async def race_error_handler(request, exc: RaceError):
    """Map rejected engine operations to HTTP status codes"""
    status_code = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

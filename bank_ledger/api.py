"""
FastAPI REST API Module

Request dispatcher for the ledger: translates HTTP requests into Ledger
Operations and Audit Projector calls, and ledger failures into HTTP errors.
Runs on port 8090 by default.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
import uvicorn

from . import __version__
from .accounts import AccountStore
from .audit import AuditProjector
from .config import LedgerConfig, get_config
from .errors import (
    AccountNotFoundError, ConflictError, DuplicateAccountError,
    InsufficientFundsError, InvalidAmountError, InvalidNameError,
    LedgerError, SameAccountError, StorageError
)
from .ledger import LedgerOperations, retry_on_conflict
from .logging_config import get_logger, setup_logging
from .schemas import (
    AccountModel, AmountRequest, AuditRecordModel, CreateAccountRequest, TransferRequest
)
from .storage import DocumentStore, create_document_store


T = TypeVar("T")

logger = get_logger("bank_ledger.api")

ERROR_STATUS: Dict[Type[LedgerError], int] = {
    InvalidAmountError: status.HTTP_400_BAD_REQUEST,
    InvalidNameError: status.HTTP_400_BAD_REQUEST,
    SameAccountError: status.HTTP_400_BAD_REQUEST,
    AccountNotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateAccountError: status.HTTP_409_CONFLICT,
    ConflictError: status.HTTP_409_CONFLICT,
    InsufficientFundsError: 422,
}


def status_for(error: LedgerError) -> int:
    """HTTP status for a ledger failure (subclasses inherit their parent's)"""
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


class LedgerSystem:
    """Ledger components wired around one explicitly owned store handle"""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.accounts = AccountStore(store)
        self.ledger = LedgerOperations(self.accounts)
        self.auditor = AuditProjector(self.accounts)

    @classmethod
    def from_config(cls, config: LedgerConfig) -> 'LedgerSystem':
        return cls(create_document_store(config))

    def close(self) -> None:
        self.store.close()


router = APIRouter()


def get_ledger_system(request: Request) -> LedgerSystem:
    return request.app.state.system


def get_app_config(request: Request) -> LedgerConfig:
    return request.app.state.config


def _execute(operation: Callable[[], T], config: LedgerConfig, retry: bool = True) -> T:
    try:
        if retry:
            return retry_on_conflict(operation, retries=config.conflict_retries)
        return operation()
    except LedgerError as e:
        raise HTTPException(status_code=status_for(e), detail=e.message)
    except StorageError as e:
        logger.error(f"Storage failure: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="Storage unavailable")


# Handlers are plain functions so the server runs them on its worker
# thread pool; the store calls they make are blocking.

@router.post("/account", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    system: LedgerSystem = Depends(get_ledger_system),
    config: LedgerConfig = Depends(get_app_config)
):
    """Create a new account with a zero balance"""
    # Creation is not retried: a generated number never conflicts
    account = _execute(lambda: system.ledger.create_account(request.name), config, retry=False)
    return AccountModel.from_account(account).model_dump(by_alias=True)


@router.get("/account/{account_number}")
def get_account(
    account_number: int,
    system: LedgerSystem = Depends(get_ledger_system),
    config: LedgerConfig = Depends(get_app_config)
):
    """Get account details"""
    account = _execute(lambda: system.ledger.get_account(account_number), config, retry=False)
    return AccountModel.from_account(account).model_dump(by_alias=True)


@router.post("/account/{account_number}/deposit")
def deposit(
    account_number: int,
    request: AmountRequest,
    system: LedgerSystem = Depends(get_ledger_system),
    config: LedgerConfig = Depends(get_app_config)
):
    """Deposit money to an account"""
    account = _execute(lambda: system.ledger.deposit(account_number, request.amount), config)
    return AccountModel.from_account(account).model_dump(by_alias=True)


@router.post("/account/{account_number}/withdraw")
def withdraw(
    account_number: int,
    request: AmountRequest,
    system: LedgerSystem = Depends(get_ledger_system),
    config: LedgerConfig = Depends(get_app_config)
):
    """Withdraw money from an account"""
    account = _execute(lambda: system.ledger.withdraw(account_number, request.amount), config)
    return AccountModel.from_account(account).model_dump(by_alias=True)


@router.post("/account/{account_number}/send")
def send(
    account_number: int,
    request: TransferRequest,
    system: LedgerSystem = Depends(get_ledger_system),
    config: LedgerConfig = Depends(get_app_config)
):
    """Transfer money from this account to the account in the body"""
    account = _execute(
        lambda: system.ledger.transfer(account_number, request.account_number, request.amount),
        config
    )
    return AccountModel.from_account(account).model_dump(by_alias=True)


@router.get("/account/{account_number}/audit")
def get_audit_log(
    account_number: int,
    limit: Optional[int] = Query(None, ge=1),
    system: LedgerSystem = Depends(get_ledger_system),
    config: LedgerConfig = Depends(get_app_config)
) -> List[dict]:
    """Audit log of an account, newest first"""
    if config.audit_max_records > 0:
        limit = min(limit, config.audit_max_records) if limit is not None else config.audit_max_records

    records = _execute(lambda: system.auditor.audit_log(account_number, limit), config, retry=False)
    return [AuditRecordModel.from_record(record).model_dump(exclude_none=True) for record in records]


def create_app(system: Optional[LedgerSystem] = None,
               config: Optional[LedgerConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Ledger components to serve (built from config if not provided)
        config: Configuration (global configuration if not provided)

    Returns:
        FastAPI app
    """
    config = config or get_config()
    setup_logging(config.log_level, config.log_format)

    owns_system = system is None
    if system is None:
        system = LedgerSystem.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_system:
            app.state.system.close()

    app = FastAPI(
        title="Bank Ledger API",
        description="Account ledger with optimistic concurrency and a derived audit log",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.system = system
    app.state.config = config

    app.include_router(router, tags=["Accounts"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bank_ledger",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "bank_ledger.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        workers=None if debug else config.api_workers,
        reload=debug,
        log_level=config.log_level.lower()
    )

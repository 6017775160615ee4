"""
FastAPI application for the ballot box API.

Voters register, log in with email, full name and password, cast exactly one
vote with the bearer token they receive, and read the ranked results.
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ballotbox.shared.models import LoginOutcome, RegistrationOutcome, ResultEntry, VoteOutcome
from ballotbox.storage import Ledger, StorageError, create_ledger

from .auth import Authenticator, SessionRegistry
from .config import settings
from .coordinator import VoteCoordinator
from .models import (
    CandidateModel,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    RegisterRequest,
    RegisterResponse,
    ResultEntryModel,
    ResultsResponse,
    SessionResponse,
    VoteReceiptModel,
    VoteRequest,
    VoteResponse,
)
from .registration import Registrar
from .results import ResultAggregator

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
votes_cast = Counter(
    "ballotbox_votes_cast_total",
    "Total number of accepted votes",
    ["candidate"]
)
vote_rejections = Counter(
    "ballotbox_vote_rejections_total",
    "Total number of rejected vote casts",
    ["outcome"]
)
login_attempts = Counter(
    "ballotbox_login_attempts_total",
    "Total number of login attempts",
    ["outcome"]
)
request_duration = Histogram(
    "ballotbox_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Store and services, built in lifespan
ledger: Optional[Ledger] = None
authenticator: Optional[Authenticator] = None
session_registry: Optional[SessionRegistry] = None
coordinator: Optional[VoteCoordinator] = None
aggregator: Optional[ResultAggregator] = None
registrar: Optional[Registrar] = None

# Rate limiter
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

bearer = HTTPBearer(auto_error=False)

LOGIN_STATUS = {
    LoginOutcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    LoginOutcome.IDENTITY_MISMATCH: status.HTTP_401_UNAUTHORIZED,
    LoginOutcome.BAD_CREDENTIAL: status.HTTP_401_UNAUTHORIZED,
    LoginOutcome.ALREADY_VOTED: status.HTTP_409_CONFLICT,
}

LOGIN_MESSAGES = {
    LoginOutcome.NOT_FOUND: "No voter registered with this email",
    LoginOutcome.IDENTITY_MISMATCH: "Full name does not match the registered voter",
    LoginOutcome.BAD_CREDENTIAL: "Incorrect password",
    LoginOutcome.ALREADY_VOTED: "This voter has already voted",
}

VOTE_STATUS = {
    VoteOutcome.ALREADY_VOTED: status.HTTP_409_CONFLICT,
    VoteOutcome.UNKNOWN_CANDIDATE: status.HTTP_404_NOT_FOUND,
    VoteOutcome.MISSING_CANDIDATE: status.HTTP_400_BAD_REQUEST,
    VoteOutcome.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    VoteOutcome.STORAGE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}

REGISTRATION_STATUS = {
    RegistrationOutcome.PASSWORD_MISMATCH: status.HTTP_400_BAD_REQUEST,
    RegistrationOutcome.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    RegistrationOutcome.EMAIL_TAKEN: status.HTTP_409_CONFLICT,
}


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    """JSON error body shared by every endpoint."""
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message).model_dump()
    )


def _entry_model(entry: ResultEntry) -> ResultEntryModel:
    return ResultEntryModel(
        name=entry.name,
        symbol=entry.symbol,
        votes=entry.votes,
        percentage=entry.percentage
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global ledger, authenticator, session_registry, coordinator, aggregator, registrar

    # Startup
    logger.info(f"Starting {settings.SERVICE_NAME} service...")

    try:
        ledger = create_ledger(
            settings.database_url,
            lock_timeout=settings.VOTE_TIMEOUT_SECONDS,
            pool_min_size=settings.POSTGRES_POOL_MIN_SIZE,
            pool_max_size=settings.POSTGRES_POOL_MAX_SIZE
        )
        await ledger.initialize()

        authenticator = Authenticator(ledger)
        session_registry = SessionRegistry(ledger, ttl_minutes=settings.SESSION_TTL_MINUTES)
        coordinator = VoteCoordinator(ledger, timeout=settings.VOTE_TIMEOUT_SECONDS)
        aggregator = ResultAggregator(ledger)
        registrar = Registrar(ledger, bcrypt_rounds=settings.BCRYPT_ROUNDS)

        logger.info(f"{settings.SERVICE_NAME} started successfully")

    except Exception as e:
        logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
        raise

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")

    try:
        await ledger.close()
        logger.info(f"{settings.SERVICE_NAME} shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI app
app = FastAPI(
    title="Ballot Box API",
    description="API for voter login, vote casting and ranked results",
    version=settings.API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    """The store could not be reached or failed mid-request."""
    logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
    return error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        VoteOutcome.STORAGE_ERROR.value,
        "Store unavailable, please retry"
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "Internal server error"
    )


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration."""
    start = time.perf_counter()
    response = await call_next(request)

    request_duration.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).observe(time.perf_counter() - start)

    return response


@app.post(
    f"/api/{settings.API_VERSION}/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input or passwords differ"},
        409: {"model": ErrorResponse, "description": "Email already registered"},
        429: {"description": "Rate limit exceeded"},
        503: {"model": ErrorResponse, "description": "Store unavailable"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def register(request: Request, body: RegisterRequest):
    """
    Register a new voter.

    - **full_name**: Voter full name
    - **email**: Unique email
    - **password** / **confirm**: Password, typed twice
    """
    result = await registrar.register(body.full_name, body.email, body.password, body.confirm)

    if not result.ok:
        return error_response(
            REGISTRATION_STATUS[result.outcome],
            result.outcome.value,
            result.message
        )

    return RegisterResponse(user_id=result.user_id, message=result.message)


@app.post(
    f"/api/{settings.API_VERSION}/login",
    response_model=SessionResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Name or password does not match"},
        404: {"model": ErrorResponse, "description": "Email not registered"},
        409: {"model": ErrorResponse, "description": "Voter already voted"},
        429: {"description": "Rate limit exceeded"},
        503: {"model": ErrorResponse, "description": "Store unavailable"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def login(request: Request, body: LoginRequest):
    """
    Log a voter in.

    All three of email, full name (case-insensitive) and password must match.
    A voter who already voted is refused a session.
    """
    result = await authenticator.authenticate(body.email, body.full_name, body.password)
    login_attempts.labels(outcome=result.outcome.value).inc()

    if result.outcome != LoginOutcome.SESSION_ESTABLISHED:
        return error_response(
            LOGIN_STATUS[result.outcome],
            result.outcome.value,
            LOGIN_MESSAGES[result.outcome]
        )

    session = result.session
    token = await session_registry.issue(session)

    return SessionResponse(
        token=token,
        voter_id=session.voter_id,
        full_name=session.full_name,
        email=session.email,
        expires_at=session.expires_at
    )


@app.post(
    f"/api/{settings.API_VERSION}/logout",
    status_code=status.HTTP_204_NO_CONTENT
)
async def logout(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)):
    """Revoke the bearer token. Unknown tokens are ignored."""
    if credentials is not None:
        await session_registry.revoke(credentials.credentials)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    f"/api/{settings.API_VERSION}/vote",
    response_model=VoteResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "No candidate selected"},
        401: {"model": ErrorResponse, "description": "Missing, unknown or expired token"},
        404: {"model": ErrorResponse, "description": "Candidate does not exist"},
        409: {"model": ErrorResponse, "description": "Voter already voted"},
        429: {"description": "Rate limit exceeded"},
        503: {"model": ErrorResponse, "description": "Vote not recorded, retry"}
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def cast_vote(
    request: Request,
    vote: VoteRequest,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)
):
    """
    Cast the session voter's vote.

    - **candidate_name**: Name of the chosen candidate

    Returns a receipt once the vote, the counter increment and the voted flag
    are committed together.
    """
    token = credentials.credentials if credentials is not None else None
    session = await session_registry.resolve(token)

    result = await coordinator.cast_vote(session, vote.candidate_name)

    if not result.ok:
        vote_rejections.labels(outcome=result.outcome.value).inc()
        return error_response(VOTE_STATUS[result.outcome], result.outcome.value, result.detail)

    votes_cast.labels(candidate=result.receipt.candidate_name).inc()

    return VoteResponse(
        receipt=VoteReceiptModel(**result.receipt.to_dict()),
        message=result.detail
    )


@app.get(
    f"/api/{settings.API_VERSION}/results",
    response_model=ResultsResponse,
    responses={
        503: {"model": ErrorResponse, "description": "Store unavailable"}
    }
)
async def get_results() -> ResultsResponse:
    """
    Get the ranked results.

    Candidates are ordered by votes, ties by name. Percentages are rounded to
    one decimal; has_votes is false while nothing was cast.
    """
    result = await aggregator.compute_results()

    winner = result.winner

    return ResultsResponse(
        entries=[_entry_model(e) for e in result.entries],
        total_votes=result.total_votes,
        has_votes=result.has_votes,
        winner=_entry_model(winner) if winner else None
    )


@app.get(
    f"/api/{settings.API_VERSION}/candidates",
    response_model=list[CandidateModel]
)
async def get_candidates() -> list[CandidateModel]:
    """List the ballot, without counts."""
    candidates = await ledger.list_candidates()
    return [
        CandidateModel(name=c.name, symbol=c.symbol)
        for c in sorted(candidates, key=lambda c: c.name)
    ]


@app.get(
    f"/api/{settings.API_VERSION}/health",
    response_model=HealthResponse,
    responses={
        503: {"model": HealthResponse, "description": "Service unhealthy"}
    }
)
async def health_check() -> HealthResponse:
    """
    Check health of the service and its store.

    Returns overall health status and individual service statuses.
    """
    services = {}

    try:
        store_healthy = await ledger.check_health()
        services["database"] = "connected" if store_healthy else "disconnected"
    except Exception as e:
        logger.error(f"Store health check error: {e}")
        services["database"] = "error"

    all_healthy = all(
        state == "connected" for state in services.values()
    )

    overall_status = "healthy" if all_healthy else "unhealthy"
    status_code = status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    response = HealthResponse(
        status=overall_status,
        services=services
    )

    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(mode="json")
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.API_VERSION,
        "status": "running",
        "docs": "/docs"
    }


def run():
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "ballotbox.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )


if __name__ == "__main__":
    run()

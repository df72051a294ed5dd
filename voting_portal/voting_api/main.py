"""
FastAPI application for the voting portal.

Voters log in, cast one vote per position and read their own history;
admins read the tallies.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from pydantic import ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from voting_portal.aggregation.aggregator import ResultsAggregator
from voting_portal.shared.database import Database
from voting_portal.shared.errors import (
    Forbidden,
    StorageError,
    Unauthorized,
    VoteValidationError,
    VotingError,
)
from voting_portal.shared.models import AuthenticatedVoter, PositionNormalizer, group_by_position
from voting_portal.shared.store import VoteStore
from .captcha import CaptchaVerifier
from .config import DEFAULT_JWT_SECRET, settings
from .engine import VotingEngine
from .models import (
    AuthCheckResponse,
    CatalogResponse,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    ResultsResponse,
    VoteHistoryResponse,
    VoteRequest,
    VoteResponse,
)
from .session import SessionResolver
from .tokens import TokenService

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
votes_cast = Counter(
    "votes_cast_total",
    "Total number of votes recorded",
    ["position"]
)
vote_errors = Counter(
    "vote_errors_total",
    "Total number of rejected requests",
    ["error_type"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

database = Database(
    settings.postgres_dsn,
    min_size=settings.POSTGRES_POOL_MIN_SIZE,
    max_size=settings.POSTGRES_POOL_MAX_SIZE,
    create_schema=settings.POSTGRES_CREATE_SCHEMA
)
normalize = PositionNormalizer(
    case_fold=settings.POSITION_CASE_FOLD,
    trim_whitespace=settings.POSITION_TRIM_WHITESPACE
)
token_service = TokenService(
    settings.JWT_SECRET_KEY,
    algorithm=settings.JWT_ALGORITHM,
    lifetime=timedelta(hours=settings.TOKEN_LIFETIME_HOURS)
)
sessions = SessionResolver(token_service, cookie_name=settings.AUTH_COOKIE_NAME)
captcha_verifier = CaptchaVerifier(
    settings.RECAPTCHA_SECRET_KEY,
    verify_url=settings.RECAPTCHA_VERIFY_URL,
    timeout=settings.RECAPTCHA_TIMEOUT
)

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED
)


def get_store() -> VoteStore:
    return database


def get_engine(store: VoteStore = Depends(get_store)) -> VotingEngine:
    return VotingEngine(store, normalize)


def get_aggregator(store: VoteStore = Depends(get_store)) -> ResultsAggregator:
    return ResultsAggregator(store, normalize)


def get_captcha() -> CaptchaVerifier:
    return captcha_verifier


def get_current_voter(request: Request) -> Optional[AuthenticatedVoter]:
    """Resolve the session cookie. ``None`` means unauthenticated."""
    return sessions.resolve(request)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info(f"Starting {settings.SERVICE_NAME} service...")

    if settings.JWT_SECRET_KEY == DEFAULT_JWT_SECRET and settings.is_production:
        logger.warning("JWT_SECRET_KEY is the built-in default; set a real secret")

    try:
        await database.initialize()
        logger.info(f"{settings.SERVICE_NAME} started successfully")
    except Exception as e:
        logger.error(f"Failed to start {settings.SERVICE_NAME}: {e}")
        raise

    yield

    logger.info(f"Shutting down {settings.SERVICE_NAME} service...")
    await database.close()
    logger.info(f"{settings.SERVICE_NAME} shut down successfully")


# Create FastAPI app
app = FastAPI(
    title="Voting Portal API",
    description="API for casting one vote per position and reading results",
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


@app.exception_handler(VotingError)
async def voting_error_handler(request: Request, exc: VotingError):
    """Render domain errors as {error, message}."""
    vote_errors.labels(error_type=exc.kind).inc()
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def describe_validation_errors(errors) -> str:
    """First validation error as "field: message"."""
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Render malformed or incomplete request bodies as 400 ValidationError."""
    message = describe_validation_errors(exc.errors())
    return await voting_error_handler(request, VoteValidationError(message))


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration."""
    start_time = time.time()
    response = await call_next(request)

    request_duration.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).observe(time.time() - start_time)

    return response


async def read_ballot(request: Request) -> VoteRequest:
    """Parse and validate the vote body."""
    try:
        payload = await request.json()
    except ValueError:
        raise VoteValidationError("Request body must be valid JSON")

    try:
        return VoteRequest.model_validate(payload)
    except ValidationError as e:
        raise VoteValidationError(describe_validation_errors(e.errors()))


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid, duplicate or malformed input"},
    401: {"model": ErrorResponse, "description": "Not authenticated"},
    429: {"description": "Rate limit exceeded"},
    500: {"model": ErrorResponse, "description": "Internal server error"}
}


@app.post(
    f"/api/{settings.API_VERSION}/auth/login",
    response_model=LoginResponse,
    responses=ERROR_RESPONSES
)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    store: VoteStore = Depends(get_store),
    captcha: CaptchaVerifier = Depends(get_captcha)
) -> LoginResponse:
    """
    Log a voter in.

    - **email**: Voter email
    - **spe_number**: Voter registration number
    - **recaptchaToken**: reCAPTCHA response (required when reCAPTCHA is configured)

    Sets the session cookie on success.
    """
    try:
        remote_ip = request.client.host if request.client else None
        if not await captcha.verify(credentials.recaptchaToken, remote_ip):
            raise VoteValidationError("Invalid reCAPTCHA")

        voter = await store.get_voter_by_credentials(credentials.email, credentials.spe_number)
        if voter is None:
            logger.info(f"Failed login for {credentials.email}")
            raise Unauthorized("Invalid credentials")

        sessions.start_session(
            response,
            AuthenticatedVoter.from_voter(voter),
            secure=settings.is_production
        )
        logger.info(f"Voter {voter.id} logged in")

        return LoginResponse(success=True)

    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error during login: {e}", exc_info=True)
        raise StorageError("Server error")


@app.get(
    f"/api/{settings.API_VERSION}/auth/check",
    response_model=AuthCheckResponse,
    responses={401: {"model": ErrorResponse, "description": "Not authenticated"}}
)
async def check_session(
    voter: Optional[AuthenticatedVoter] = Depends(get_current_voter)
) -> AuthCheckResponse:
    """Report whether the session cookie is valid."""
    if voter is None:
        raise Unauthorized("Unauthorized")
    return AuthCheckResponse(voter_id=voter.voter_id, level=voter.level)


@app.get(
    f"/api/{settings.API_VERSION}/candidates",
    response_model=CatalogResponse,
    responses={500: {"model": ErrorResponse, "description": "Internal server error"}}
)
async def get_candidates(store: VoteStore = Depends(get_store)) -> CatalogResponse:
    """Candidates grouped by position, in catalog order."""
    try:
        candidates = await store.list_candidates()
        positions = []
        for members in group_by_position(candidates, normalize).values():
            positions.append({
                "position": members[0].position.strip(),
                "candidates": [
                    {
                        "id": c.id,
                        "full_name": c.full_name,
                        "bio": c.bio,
                        "image_url": c.image_url
                    }
                    for c in members
                ]
            })
        return CatalogResponse(positions=positions)

    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error getting candidates: {e}", exc_info=True)
        raise StorageError("Internal server error")


@app.post(
    f"/api/{settings.API_VERSION}/vote",
    response_model=VoteResponse,
    responses=ERROR_RESPONSES,
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": VoteRequest.model_json_schema()}}
        }
    }
)
@limiter.limit(settings.RATE_LIMIT)
async def submit_vote(
    request: Request,
    voter: Optional[AuthenticatedVoter] = Depends(get_current_voter),
    engine: VotingEngine = Depends(get_engine)
) -> VoteResponse:
    """
    Cast a vote for one position.

    - **candidateId**: Candidate ID
    - **position**: Position the candidate stands for

    Returns whether the voter has now voted in every position.
    The body is parsed after the session check, so an unauthenticated
    request is always 401 whatever it carries.
    """
    if voter is None:
        raise Unauthorized()

    ballot = await read_ballot(request)

    try:
        outcome = await engine.cast_vote(voter, ballot.position, ballot.candidateId)
        votes_cast.labels(position=outcome.vote.position_key).inc()

        return VoteResponse(
            success=True,
            hasCompletedVoting=outcome.completed,
            redirect="/vote/thanks" if outcome.completed else None
        )

    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error submitting vote: {e}", exc_info=True)
        raise StorageError()


@app.get(
    f"/api/{settings.API_VERSION}/votes",
    response_model=VoteHistoryResponse,
    responses=ERROR_RESPONSES
)
async def get_my_votes(
    voter: Optional[AuthenticatedVoter] = Depends(get_current_voter),
    engine: VotingEngine = Depends(get_engine)
) -> VoteHistoryResponse:
    """The caller's own votes."""
    try:
        votes, completed = await engine.voting_history(voter)
        return VoteHistoryResponse(
            votes=[vote.to_dict() for vote in votes],
            hasCompletedVoting=completed
        )

    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error getting vote history: {e}", exc_info=True)
        raise StorageError("Internal server error")


@app.get(
    f"/api/{settings.API_VERSION}/results",
    response_model=ResultsResponse,
    responses={
        **ERROR_RESPONSES,
        403: {"model": ErrorResponse, "description": "Admin access required"}
    }
)
async def get_results(
    voter: Optional[AuthenticatedVoter] = Depends(get_current_voter),
    aggregator: ResultsAggregator = Depends(get_aggregator)
) -> ResultsResponse:
    """Per-position tallies. Admin only."""
    if voter is None:
        raise Unauthorized("Unauthorized")
    if voter.level < settings.ADMIN_LEVEL:
        raise Forbidden()

    try:
        results = await aggregator.tally()
        completed = await aggregator.completed_voters()
        return ResultsResponse(
            positions=[tally.to_dict() for tally in results.values()],
            total_voters_completed=completed,
            updated_at=datetime.now(timezone.utc)
        )

    except VotingError:
        raise
    except Exception as e:
        logger.error(f"Error getting results: {e}", exc_info=True)
        raise StorageError("Internal server error")


@app.get(
    f"/api/{settings.API_VERSION}/health",
    response_model=HealthResponse,
    responses={
        503: {"model": HealthResponse, "description": "Service unhealthy"}
    }
)
async def health_check(store: VoteStore = Depends(get_store)):
    """Check health of the service and its database."""
    services = {}

    try:
        postgres_healthy = await store.check_health()
        services["postgresql"] = "connected" if postgres_healthy else "disconnected"
    except Exception as e:
        logger.error(f"PostgreSQL health check error: {e}")
        services["postgresql"] = "error"

    all_healthy = all(state == "connected" for state in services.values())
    status_code = status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE

    response = HealthResponse(
        status="healthy" if all_healthy else "unhealthy",
        services=services,
        timestamp=datetime.now(timezone.utc)
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
    """Root endpoint with API information."""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.API_VERSION,
        "status": "running",
        "endpoints": {
            "login": f"/api/{settings.API_VERSION}/auth/login",
            "check_session": f"/api/{settings.API_VERSION}/auth/check",
            "candidates": f"/api/{settings.API_VERSION}/candidates",
            "submit_vote": f"/api/{settings.API_VERSION}/vote",
            "my_votes": f"/api/{settings.API_VERSION}/votes",
            "results": f"/api/{settings.API_VERSION}/results",
            "health": f"/api/{settings.API_VERSION}/health",
            "metrics": "/metrics"
        }
    }


def run():
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "voting_portal.voting_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )


if __name__ == "__main__":
    run()

import socketio
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer
from firebase_admin import auth

from pacmac.api import middleware
from pacmac.api.dependencies import get_payment_gateway, set_auction_timers
from pacmac.api.middleware import authenticate_request, init_firebase
from pacmac.api.routes import (
    auth_route,
    disputes_route,
    transactions_route,
    users_route,
)
from pacmac.api.routes.listings import router as listings_router
from pacmac.core.config import config
from pacmac.core.exceptions import (
    ExternalServiceError,
    InvalidTransition,
    NotFoundError,
    PacmacError,
    PermissionDenied,
    ValidationError,
)
from pacmac.core.logging import get_logger
from pacmac.db.database import async_session, load_models
from pacmac.models.user_model import User
from pacmac.services.auction.bidding import AuctionSettlement
from pacmac.services.auction.timer import AuctionTimerService
from pacmac.services.events import events

load_models()

logger = get_logger(__name__)

security = HTTPBearer()
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")


@sio.event
async def connect(sid, environ, auth_data):
    token = (auth_data or {}).get("token")
    if not token:
        return False  # reject the connection
    try:
        user = auth.verify_id_token(token, middleware.firebase_app)
    except (ValueError, auth.InvalidIdTokenError, auth.CertificateFetchError):
        logger.warning("Rejected socket connection %s with an invalid token", sid)
        return False

    # rooms are keyed by email, the same identity the REST API resolves users by
    await sio.enter_room(sid, user["email"])
    return True


@sio.event
async def disconnect(sid):
    for room in sio.rooms(sid):
        await sio.leave_room(sid, room)


async def emit_to_parties(name: str, payload: dict):
    """Forwards a domain event to the sockets of the users it concerns."""
    user_ids = {
        payload.get(key)
        for key in ("buyer_id", "seller_id", "bidder_id", "winner_id", "sender_id")
        if payload.get(key) is not None
    }
    if not user_ids:
        return

    async with async_session() as session:
        for user_id in user_ids:
            user = await session.get(User, user_id)
            if user is not None:
                await sio.emit(name, payload, room=user.email)


async def lifespan(app: FastAPI):
    # Perform startup tasks
    init_firebase()
    scheduler = AsyncIOScheduler()

    timers = AuctionTimerService(async_session, scheduler=scheduler)
    timers.add_listener(AuctionSettlement(async_session, get_payment_gateway()))
    set_auction_timers(timers)

    # catches expiries whose scheduled wake-up was missed
    scheduler.add_job(
        timers.expire_due_timers,
        "interval",
        seconds=config.auction_reconcile_interval_seconds,
        id="auction-timer-reconcile",
        replace_existing=True,
    )
    scheduler.start()
    app.state.scheduler = scheduler  # Store the scheduler in app state for access

    await timers.restore()
    events.subscribe(emit_to_parties)
    logger.info("Started in %s environment", config.render_env)
    yield

    # Cleanup
    events.unsubscribe(emit_to_parties)
    scheduler.shutdown()


app = FastAPI(dependencies=[Depends(security)], lifespan=lifespan)


def error_response(status_code: int, exc: PacmacError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    return error_response(status.HTTP_403_FORBIDDEN, exc)


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(ExternalServiceError)
async def external_service_handler(request: Request, exc: ExternalServiceError):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return error_response(status.HTTP_502_BAD_GATEWAY, exc)


app.include_router(auth_route.router)
app.include_router(users_route.router)
app.include_router(listings_router)
app.include_router(transactions_route.router)
app.include_router(disputes_route.router)
app.middleware("http")(authenticate_request)

asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)

import asyncio
import secrets
import traceback
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    Query,
    Request,
    Response,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import HTTPConnection

from ..application.services import (
    auth_service,
    discover_service,
    listing_service,
    marketplace_service,
    profile_service,
    trending_service,
)
from ..application.services.live_service import LiveListing, LiveListings
from ..domain.formatting import listed_labels
from ..domain.geo import coordinates_or_none
from ..domain.stats import safe_role
from ..infra.backend_client import BackendClient, BackendSettings
from ..infra.backend_errors import BackendError
from ..infra.config import get_config
from ..infra.favorites_store import FavoritesStore, build_favorites_store
from ..infra.session_store import SessionStore, build_session_store
from ..observability.logging_utils import (
    get_trace_id,
    init_logging,
    log_event,
    log_failure,
    reset_trace_id,
    set_trace_id,
)
from ..schemas import (
    AuthSession,
    AvailabilityUpdate,
    DiscoverPage,
    FavoriteState,
    FormResult,
    ImageUpload,
    ListingCriteria,
    ListingDetailPage,
    ListingForm,
    ListingsPage,
    MarketplacePage,
    OfferRequest,
    ProduceCategory,
    ProfilePage,
    Quality,
    ResendRequest,
    SessionState,
    SignInForm,
    SignUpForm,
    TrendingSnapshot,
    Unit,
)


SESSION_COOKIE = "agc_session"
BROWSER_COOKIE = "agc_browser"


def get_backend(conn: HTTPConnection) -> BackendClient:
    return conn.app.state.backend


def get_session_store(conn: HTTPConnection) -> SessionStore:
    return conn.app.state.session_store


def get_favorites_store(conn: HTTPConnection) -> FavoritesStore:
    return conn.app.state.favorites_store


async def get_session(
    conn: HTTPConnection,
    backend: BackendClient = Depends(get_backend),
    store: SessionStore = Depends(get_session_store),
) -> Optional[AuthSession]:
    return await auth_service.current_session(
        backend, store, conn.cookies.get(SESSION_COOKIE)
    )


def listing_criteria(
    q: str = "",
    category: str = "all",
    quality: str = "all",
    max_price: Optional[float] = None,
    sort: str = "newest",
) -> ListingCriteria:
    return ListingCriteria(
        query=q, category=category, quality=quality, max_price=max_price, sort=sort
    )


def _set_cookie(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        name,
        value,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=get_config().session_cookie_secure,
    )


def _remember_session(response: Response, store: SessionStore, session: AuthSession) -> None:
    session_id = secrets.token_urlsafe(32)
    store.set(session_id, session)
    _set_cookie(response, SESSION_COOKIE, session_id, get_config().session_store_ttl_seconds)


def _browser_id(request: Request, response: Response) -> str:
    browser_id = request.cookies.get(BROWSER_COOKIE)
    if not browser_id:
        browser_id = uuid.uuid4().hex
        _set_cookie(response, BROWSER_COOKIE, browser_id, 365 * 86400)
    return browser_id


async def _wait_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _relay(websocket: WebSocket, payloads: AsyncIterator[Dict[str, Any]]) -> bool:
    """Send payloads until the feed ends or the browser goes away.

    Returns ``True`` when the browser disconnected. Cancelling the sender
    exits the subscription context, so late events are dropped.
    """

    async def pump() -> None:
        async for payload in payloads:
            await websocket.send_json(payload)

    sender = asyncio.create_task(pump())
    watcher = asyncio.create_task(_wait_disconnect(websocket))
    done, pending = await asyncio.wait(
        {sender, watcher}, return_when=asyncio.FIRST_COMPLETED
    )
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    if sender in done:
        error = sender.exception()
        if isinstance(error, WebSocketDisconnect):
            return True
        if error is not None:
            raise error
    return watcher in done


def create_app(
    *,
    backend: Optional[BackendClient] = None,
    session_store: Optional[SessionStore] = None,
    favorites_store: Optional[FavoritesStore] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = get_config()
        init_logging(log_path=cfg.log_path)
        app.state.backend = backend or BackendClient(BackendSettings.from_config(cfg))
        app.state.session_store = session_store or build_session_store()
        app.state.favorites_store = favorites_store or build_favorites_store()
        log_event("startup", backend_url=app.state.backend.settings.url)
        try:
            yield
        finally:
            await app.state.backend.aclose()
            log_event("shutdown")

    app = FastAPI(title="AgriConnect", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        trace_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.trace_id = trace_id
        token = set_trace_id(trace_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = trace_id
            return response
        finally:
            reset_trace_id(token)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        trace_id = getattr(request.state, "trace_id", None) or get_trace_id()
        log_failure(
            "unhandled_error",
            path=request.url.path,
            trace=trace_id,
            error=str(exc),
            traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )
        return JSONResponse(
            status_code=500,
            content={"detail": {"error": "Internal server error", "trace_id": trace_id}},
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "backend": get_config().backend_url}

    # ---- auth ---------------------------------------------------------------

    @app.post("/api/auth/signup", response_model=FormResult)
    async def signup(
        form: SignUpForm,
        response: Response,
        backend: BackendClient = Depends(get_backend),
        store: SessionStore = Depends(get_session_store),
    ):
        result, session = await auth_service.sign_up(backend, form)
        if session is not None:
            _remember_session(response, store, session)
        return result

    @app.post("/api/auth/login", response_model=FormResult)
    async def login(
        form: SignInForm,
        response: Response,
        backend: BackendClient = Depends(get_backend),
        store: SessionStore = Depends(get_session_store),
    ):
        result, session = await auth_service.sign_in(backend, form)
        if session is not None:
            _remember_session(response, store, session)
        return result

    @app.post("/api/auth/logout", response_model=FormResult)
    async def logout(
        request: Request,
        response: Response,
        backend: BackendClient = Depends(get_backend),
        store: SessionStore = Depends(get_session_store),
    ):
        result = await auth_service.sign_out(
            backend, store, request.cookies.get(SESSION_COOKIE)
        )
        response.delete_cookie(SESSION_COOKIE)
        return result

    @app.get("/api/auth/session", response_model=SessionState)
    async def session_state(
        backend: BackendClient = Depends(get_backend),
        session: Optional[AuthSession] = Depends(get_session),
    ):
        if session is None:
            return SessionState()
        account = await profile_service.load_account(backend, session)
        return SessionState(
            signed_in=True,
            user=session.user,
            role=safe_role(account.role if account else None),
            redirect=await auth_service.redirect_if_signed_in(backend, session),
        )

    @app.post("/api/auth/resend-verification", response_model=FormResult)
    async def resend_verification(
        body: ResendRequest, backend: BackendClient = Depends(get_backend)
    ):
        return await auth_service.resend_verification(backend, body.email)

    # ---- listings -----------------------------------------------------------

    @app.get("/api/listings", response_model=ListingsPage)
    async def listings(
        criteria: ListingCriteria = Depends(listing_criteria),
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        backend: BackendClient = Depends(get_backend),
    ):
        return await listing_service.browse(
            backend, criteria, origin=coordinates_or_none(lat, lng)
        )

    @app.post("/api/listings", response_model=FormResult)
    async def create_listing(
        crop_name: str = Form(""),
        variety: str = Form(""),
        quality: Quality = Form("standard"),
        quantity: str = Form(""),
        unit: Unit = Form("kg"),
        price_per_unit: str = Form(""),
        available_from: Optional[date] = Form(None),
        category_id: Optional[int] = Form(None),
        description: str = Form(""),
        farmer_location: str = Form(""),
        distance_km: str = Form(""),
        location_lat: Optional[float] = Form(None),
        location_lng: Optional[float] = Form(None),
        image: Optional[UploadFile] = File(None),
        backend: BackendClient = Depends(get_backend),
        session: Optional[AuthSession] = Depends(get_session),
    ):
        form = ListingForm(
            crop_name=crop_name,
            variety=variety,
            quality=quality,
            quantity=quantity,
            unit=unit,
            price_per_unit=price_per_unit,
            available_from=available_from,
            category_id=category_id,
            description=description,
            farmer_location=farmer_location,
            distance_km=distance_km,
            location_lat=location_lat,
            location_lng=location_lng,
        )
        upload = None
        if image is not None and image.filename:
            upload = ImageUpload(
                filename=image.filename,
                content_type=image.content_type or "",
                data=await image.read(),
            )
        account = await profile_service.load_account(backend, session)
        return await listing_service.create_listing(backend, session, account, form, upload)

    @app.get("/api/listings/{listing_id}", response_model=ListingDetailPage)
    async def listing_detail(
        listing_id: str,
        request: Request,
        response: Response,
        backend: BackendClient = Depends(get_backend),
        favorites: FavoritesStore = Depends(get_favorites_store),
    ):
        page = await listing_service.detail(
            backend,
            listing_id,
            favorites=favorites,
            owner_id=_browser_id(request, response),
        )
        if page.listing is None:
            response.status_code = 404
        return page

    @app.patch("/api/listings/{listing_id}/availability", response_model=FormResult)
    async def listing_availability(
        listing_id: str,
        body: AvailabilityUpdate,
        backend: BackendClient = Depends(get_backend),
        session: Optional[AuthSession] = Depends(get_session),
    ):
        return await listing_service.set_availability(
            backend, session, listing_id, body.available
        )

    @app.post("/api/listings/{listing_id}/favorite", response_model=FavoriteState)
    async def favorite(
        listing_id: str,
        request: Request,
        response: Response,
        favorites: FavoritesStore = Depends(get_favorites_store),
    ):
        state = listing_service.toggle_favorite(
            favorites, _browser_id(request, response), listing_id
        )
        return FavoriteState(listing_id=listing_id, favorite=state)

    @app.get("/api/favorites", response_model=ListingsPage)
    async def favorite_list(
        request: Request,
        response: Response,
        backend: BackendClient = Depends(get_backend),
        favorites: FavoritesStore = Depends(get_favorites_store),
    ):
        return await listing_service.favorite_listings(
            backend, favorites, _browser_id(request, response)
        )

    @app.get("/api/categories", response_model=List[ProduceCategory])
    async def categories(backend: BackendClient = Depends(get_backend)):
        return await listing_service.load_categories(backend)

    # ---- pages --------------------------------------------------------------

    @app.get("/api/discover", response_model=DiscoverPage)
    async def discover(
        criteria: ListingCriteria = Depends(listing_criteria),
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        radius_km: Optional[float] = None,
        focus_lat: Optional[float] = None,
        focus_lng: Optional[float] = None,
        backend: BackendClient = Depends(get_backend),
    ):
        return await discover_service.discover(
            backend,
            criteria,
            lat=lat,
            lng=lng,
            radius_km=radius_km,
            focus_lat=focus_lat,
            focus_lng=focus_lng,
        )

    @app.get("/api/trending", response_model=TrendingSnapshot)
    async def trending(
        time_range: str = Query("7d"), backend: BackendClient = Depends(get_backend)
    ):
        return await trending_service.trending(backend, time_range=time_range)

    @app.get("/api/marketplace", response_model=MarketplacePage)
    async def marketplace(
        listing_id: Optional[str] = None,
        q: str = "",
        radius_km: Optional[float] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
        backend: BackendClient = Depends(get_backend),
        session: Optional[AuthSession] = Depends(get_session),
    ):
        account = await profile_service.load_account(backend, session)
        return await marketplace_service.marketplace(
            backend,
            session,
            account,
            listing_id=listing_id,
            query=q,
            radius_km=radius_km,
            lat=lat,
            lng=lng,
        )

    @app.post("/api/marketplace/offers", response_model=FormResult)
    async def send_offer(
        body: OfferRequest,
        backend: BackendClient = Depends(get_backend),
        session: Optional[AuthSession] = Depends(get_session),
    ):
        account = await profile_service.load_account(backend, session)
        return await marketplace_service.send_offer(
            backend, session, account, body.demand_id, body.listing_id
        )

    @app.get("/api/profile", response_model=ProfilePage)
    async def profile(
        backend: BackendClient = Depends(get_backend),
        session: Optional[AuthSession] = Depends(get_session),
    ):
        return await profile_service.profile(backend, session)

    # ---- realtime -----------------------------------------------------------

    @app.websocket("/ws/listings")
    async def listings_feed(
        websocket: WebSocket,
        criteria: ListingCriteria = Depends(listing_criteria),
        backend: BackendClient = Depends(get_backend),
    ):
        await websocket.accept()
        try:
            rows = await listing_service.load_available(
                backend, limit=get_config().home_listing_limit
            )
        except BackendError as exc:
            log_failure("listings_feed_failed", kind=exc.kind.value, error=exc.message)
            await websocket.send_json({"type": "error", "message": listing_service.LOAD_FAILED})
            await websocket.close()
            return
        live = LiveListings(rows, criteria)

        async def payloads():
            yield _listings_payload(live.snapshot())
            async for snapshot in live.follow(backend.realtime):
                yield _listings_payload(snapshot)

        if not await _relay(websocket, payloads()):
            await websocket.close()

    @app.websocket("/ws/listings/{listing_id}")
    async def listing_feed(
        websocket: WebSocket,
        listing_id: str,
        backend: BackendClient = Depends(get_backend),
    ):
        await websocket.accept()
        try:
            listing = await listing_service.fetch_listing(backend, listing_id)
        except BackendError as exc:
            log_failure("listing_feed_failed", listing_id=listing_id, kind=exc.kind.value)
            listing = None
        if listing is None:
            await websocket.send_json(
                {"type": "missing", "message": listing_service.NOT_FOUND}
            )
            await websocket.close()
            return
        live = LiveListing(listing)

        async def reload_similar(row):
            return await listing_service.similar_listings(backend, row)

        async def payloads():
            yield {"type": "listing", "listing": listing.model_dump(mode="json")}
            async for kind, current in live.follow(backend.realtime, reload_similar):
                if kind == "similar":
                    yield {
                        "type": "similar",
                        "similar": [row.model_dump(mode="json") for row in current],
                    }
                elif current is None:
                    yield {"type": "deleted", "message": live.message}
                else:
                    yield {"type": "listing", "listing": current.model_dump(mode="json")}

        if not await _relay(websocket, payloads()):
            await websocket.close()

    return app


def _listings_payload(rows) -> Dict[str, Any]:
    return {
        "type": "snapshot",
        "count": len(rows),
        "listings": [row.model_dump(mode="json") for row in rows],
        "listed_ago": listed_labels(rows),
    }


app = create_app()

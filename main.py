import asyncio
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

import auth
import llm_interaction
import logic
import pricing
import schemas
from database import SessionLocal, create_db_and_tables
from errors import HaulError
from notifications import Notifier
from observability import init_observability
from request_id_middleware import RequestIdMiddleware
from settings import Settings, get_settings
from state import AppState, get_state
from store import HaulStore

logger = structlog.get_logger(__name__)


def build_state(settings: Settings, session_factory=SessionLocal) -> AppState:
    store = HaulStore(session_factory, settings)
    return AppState(
        store=store,
        notifier=Notifier(settings),
        auth=auth.DemoAuthProvider(store, settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_observability()
    create_db_and_tables()
    settings = get_settings()

    haul = build_state(settings)
    await haul.load()
    # Asked once per process; an already decided permission is kept
    haul.notifier.push.request_permission()
    app.state.haul = haul
    logger.info("HaulHelper ready", jobs=len(haul.jobs), demo_auth=settings.demo_auth)
    yield
    await haul.notifier.drain()


app = FastAPI(
    title="HaulHelper",
    description="Backend API connecting people who need items hauled with local drivers",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
origins = [
    "http://localhost",
    "http://localhost:3000",
    "http://localhost:8000",
    "http://127.0.0.1",
    "http://127.0.0.1:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)


# --- Errors surface as an alert banner; prior state is left as it was --- #
@app.exception_handler(HaulError)
async def haul_error_handler(request: Request, exc: HaulError):
    logger.warning("Request failed", error=exc.code, detail=exc.message)
    haul: Optional[AppState] = getattr(request.app.state, "haul", None)
    if haul is not None:
        await haul.notifier.alert("Error", exc.message, recipient_id=haul.user.id if haul.user else None)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


@app.get("/health", tags=["Meta"])
async def health():
    return {"status": "ok"}


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Job Endpoints ---
@app.get("/jobs/", response_model=List[schemas.Job], tags=["Jobs"])
async def list_jobs_endpoint(state: AppState = Depends(get_state)):
    return state.jobs


@app.get("/jobs/board", response_model=schemas.JobBoard, tags=["Jobs"])
async def job_board_endpoint(
    vehicle_type: Optional[schemas.VehicleType] = None,
    sort: schemas.BoardSort = schemas.BoardSort.NEWEST,
    state: AppState = Depends(get_state),
):
    return logic.job_board(state.jobs, vehicle_type=vehicle_type, sort=sort)


@app.get("/jobs/{job_id}", response_model=schemas.Job, tags=["Jobs"])
async def get_job_endpoint(job_id: str, state: AppState = Depends(get_state)):
    return await state.store.get("jobs", job_id)


@app.post("/jobs/", response_model=schemas.Job, status_code=status.HTTP_201_CREATED, tags=["Jobs"])
async def create_job_endpoint(draft: schemas.JobDraft, state: AppState = Depends(get_state)):
    return await logic.create_job(state, draft)


@app.post("/jobs/{job_id}/accept", response_model=schemas.Job, tags=["Jobs"])
async def accept_job_endpoint(job_id: str, state: AppState = Depends(get_state)):
    return await logic.accept_job(state, job_id)


@app.post("/jobs/{job_id}/confirm/driver", response_model=schemas.Job, tags=["Jobs"])
async def driver_confirm_endpoint(job_id: str, state: AppState = Depends(get_state)):
    return await logic.confirm_by_driver(state, job_id)


@app.post("/jobs/{job_id}/confirm/requester", response_model=schemas.Job, tags=["Jobs"])
async def requester_confirm_endpoint(job_id: str, state: AppState = Depends(get_state)):
    return await logic.confirm_by_requester(state, job_id)


@app.post("/jobs/{job_id}/rating", response_model=schemas.Job, tags=["Jobs"])
async def rate_job_endpoint(
    job_id: str, rating: schemas.RatingRequest, state: AppState = Depends(get_state)
):
    return await logic.rate(state, job_id, rating.role, rating.score)


# --- Pricing and AI Endpoints ---
@app.post("/quotes", response_model=schemas.Quote, tags=["Pricing"])
async def quote_endpoint(body: schemas.QuoteRequest):
    return pricing.quote(body.payout)


@app.post("/analysis", response_model=schemas.AIAnalysisResult, tags=["AI"])
async def analysis_endpoint(body: schemas.AnalysisRequest):
    return await llm_interaction.analyze_item(body.image, body.description, body.distance_miles)


# --- Auth Endpoints (demo-only shim) ---
@app.post("/auth/credentials", response_model=schemas.AuthChallenge, tags=["Auth"])
async def credentials_endpoint(body: schemas.CredentialsRequest, state: AppState = Depends(get_state)):
    return await state.auth.start_credentials(body.email, body.password, body.mode)


@app.post("/auth/sso", response_model=schemas.AuthChallenge, tags=["Auth"])
async def sso_endpoint(body: schemas.SsoRequest, state: AppState = Depends(get_state)):
    return await state.auth.start_sso(body.provider)


@app.post("/auth/verify", response_model=schemas.User, tags=["Auth"])
async def verify_endpoint(body: schemas.VerifyRequest, state: AppState = Depends(get_state)):
    return await auth.complete_sign_in(state, body.challenge_id, body.code)


@app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT, tags=["Auth"])
async def logout_endpoint(state: AppState = Depends(get_state)):
    await auth.sign_out(state)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Session User Endpoints ---
@app.get("/users/me", response_model=schemas.User, tags=["Users"])
async def get_me(current_user: schemas.User = Depends(auth.get_current_user)):
    """Returns the signed-in session user."""
    return current_user


@app.patch("/users/me/availability", response_model=schemas.User, tags=["Users"])
async def availability_endpoint(
    body: schemas.AvailabilityUpdate,
    current_user: schemas.User = Depends(auth.get_current_user),
    state: AppState = Depends(get_state),
):
    return await logic.set_availability(state, body.is_available)


@app.get("/users/me/summary", response_model=schemas.ProfileSummary, tags=["Users"])
async def summary_endpoint(
    current_user: schemas.User = Depends(auth.get_current_user),
    state: AppState = Depends(get_state),
):
    return logic.profile_summary(state.jobs, user_id=current_user.id)


# --- Notification Endpoints ---
@app.get("/notifications/banners", response_model=List[schemas.Banner], tags=["Notifications"])
async def banners_endpoint(state: AppState = Depends(get_state)):
    return state.notifier.board.active(state.user.id if state.user else None)


@app.delete("/notifications/banners/{banner_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Notifications"])
async def dismiss_banner_endpoint(banner_id: str, state: AppState = Depends(get_state)):
    state.notifier.board.dismiss(banner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/stream", tags=["Notifications"])
async def stream_banners(request: Request, user_id: Optional[str] = None, state: AppState = Depends(get_state)):
    """Server-Sent Events stream of banners for one viewer (anonymous when no user_id)."""
    manager = state.notifier.manager
    subscription_id, queue = manager.connect(user_id)

    async def event_generator():
        try:
            while True:
                message = await queue.get()
                if await request.is_disconnected():
                    logger.info("SSE client disconnected before sending", user_id=user_id)
                    break
                yield message
        except asyncio.CancelledError:
            logger.info("SSE connection cancelled", user_id=user_id)
        finally:
            manager.disconnect(subscription_id)

    return EventSourceResponse(event_generator())


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

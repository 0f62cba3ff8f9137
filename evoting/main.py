# main.py
import asyncio
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pymongo.errors import PyMongoError

from evoting.broadcast import broadcaster
from evoting.config import CORS_ORIGINS, COUNTY_NAME, LOG_LEVEL, SYSTEM_VERSION, UPLOAD_DIR
from evoting.errors import EVotingError, InvalidRequest, StoreUnavailable
from evoting.routes.admin_routes import router as admin_router
from evoting.routes.auth_routes import router as auth_router
from evoting.routes.candidate_routes import router as candidate_router
from evoting.routes.result_routes import router as result_router
from evoting.routes.voter_routes import router as voter_router
from evoting.routes.voting_routes import router as voting_router

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

app = FastAPI(title=f"{COUNTY_NAME} County E-Voting API", version=SYSTEM_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in (voting_router, result_router, candidate_router, voter_router, admin_router, auth_router):
    app.include_router(router, prefix=API_PREFIX)

app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")


# --- Error handling ---

@app.exception_handler(EVotingError)
async def evoting_error_handler(request: Request, exc: EVotingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.message, "code": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=InvalidRequest.status_code,
        content={"success": False, "detail": jsonable_encoder(exc.errors()), "code": InvalidRequest.code},
    )


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=StoreUnavailable.status_code,
        content={"success": False, "detail": StoreUnavailable.default_message, "code": StoreUnavailable.code},
    )


# --- Realtime results ---

@app.websocket("/ws/results")
async def results_socket(websocket: WebSocket):
    await websocket.accept()
    queue = broadcaster.subscribe()
    logger.info(f"Results subscriber connected ({broadcaster.subscriber_count} total)")
    # Incoming client messages are ignored; reading them is how a disconnect is noticed
    receiver = asyncio.ensure_future(websocket.receive_text())
    sender = None
    try:
        while True:
            sender = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if sender in done:
                await websocket.send_json(sender.result())
            else:
                sender.cancel()
            if receiver in done:
                receiver.result()  # raises WebSocketDisconnect once the client leaves
                receiver = asyncio.ensure_future(websocket.receive_text())
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        if sender is not None:
            sender.cancel()
        broadcaster.unsubscribe(queue)
        logger.info("Results subscriber disconnected")


# --- General Endpoints ---

@app.get("/health", tags=["Root"])
def health_check():
    return {"status": "healthy", "database": "MongoDB", "timestamp": datetime.now(timezone.utc)}


@app.get("/", tags=["Root"])
def read_root():
    return {"message": f"Welcome to the {COUNTY_NAME} County E-Voting API", "version": SYSTEM_VERSION}


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)

import json
import logging
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from callbacks import PushRegistry, process_callback
from config import Settings
from models import CallbackAck, PaymentRequest
from mpesa import MpesaClient, MpesaError, SubmissionError

settings = Settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

registry = PushRegistry(max_entries=settings.registry_max_entries)


@lru_cache
def get_mpesa_client() -> MpesaClient:
    return MpesaClient(settings)


def get_registry() -> PushRegistry:
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Application is starting up (environment={settings.mpesa_environment}, port={settings.port})")
    yield
    logger.info("Application is shutting down...")


app = FastAPI(
    title="M-Pesa STK Push API",
    description="Initiates Lipa na M-Pesa Online (STK push) payments and receives their callbacks",
    version="1.0.0",
    docs_url="/api-docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "An unexpected error occurred",
            "detail": str(exc),
            "request_method": request.method,
            "request_url": str(request.url)
        }
    )


# API Endpoints
@app.post("/api/mpesa/stk-push")
def stk_push(
    request: PaymentRequest,
    client: MpesaClient = Depends(get_mpesa_client),
    registry: PushRegistry = Depends(get_registry),
):
    """Send an STK push prompt to the caller's phone."""
    try:
        ack = client.initiate_push(
            request.amount,
            request.phone_number,
            request.account_reference,
            request.transaction_desc,
        )
    except (MpesaError, ValueError) as e:
        error = e.error_body if isinstance(e, SubmissionError) and e.error_body else str(e)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Failed to initiate STK push",
                "error": error,
            },
        )

    registry.record_push(ack, request.amount, request.phone_number)
    return {
        "success": True,
        "message": "STK push sent successfully",
        "data": ack.model_dump(by_alias=True, exclude_unset=True),
    }


@app.post("/api/mpesa/callback")
async def mpesa_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    registry: PushRegistry = Depends(get_registry),
):
    """Acknowledge the provider callback; interpret it after the response is sent."""
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning(f"M-Pesa callback with non-JSON body ({len(raw)} bytes)")
    else:
        logger.info(f"M-Pesa Callback Data: {json.dumps(payload.get('Body') if isinstance(payload, dict) else payload)}")
        background_tasks.add_task(process_callback, payload, registry)

    return CallbackAck().model_dump()


@app.get("/api/mpesa/transactions/{checkout_request_id}")
def transaction_status(checkout_request_id: str, registry: PushRegistry = Depends(get_registry)):
    """Outcome of a push as last reported by its callback."""
    entry = registry.get(checkout_request_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Unknown CheckoutRequestID {checkout_request_id}")
    return {"transaction": entry}


@app.get("/")
async def health_check():
    return {
        "status": "healthy",
        "message": "M-Pesa STK Push API is running",
        "version": app.version,
        "environment": settings.mpesa_environment
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Database
from database.flow_db import FlowDB

# Exceptions
from exceptions.flow_exception import FlowException

# Services
from services.messaging_gateway import GraphApiMessagingGateway
from services.ai_provider import HttpAIProvider
from services.variable_service import VariableService
from services.execution_log_service import ExecutionLogService
from services.node_handler_service import NodeHandlerService
from services.flow_execution_service import FlowExecutionService
from services.flow_resumption_service import FlowResumptionService
from services.product_details_service import ProductDetailsService
from services.message_router_service import MessageRouterService

# APIs
from apis.flow_execution_api import create_flow_execution_api
from apis.webhook_message_api import create_webhook_message_api

# Utils
log_util = LogUtil()
environment_utils = EnvironmentUtils(log_util=log_util)

# Database
flow_db = FlowDB(log_util=log_util, environment_utils=environment_utils)

# Channel and AI collaborators
messaging_gateway = GraphApiMessagingGateway(log_util=log_util, environment_utils=environment_utils)
ai_provider = HttpAIProvider(log_util=log_util, environment_utils=environment_utils)

# Services
variable_service = VariableService(log_util=log_util, flow_db=flow_db)
execution_log_service = ExecutionLogService(log_util=log_util, flow_db=flow_db)

node_handler_service = NodeHandlerService(
    log_util=log_util,
    environment_utils=environment_utils,
    flow_db=flow_db,
    messaging_gateway=messaging_gateway,
    ai_provider=ai_provider,
    variable_service=variable_service,
    execution_log_service=execution_log_service
)

flow_execution_service = FlowExecutionService(
    log_util=log_util,
    environment_utils=environment_utils,
    flow_db=flow_db,
    node_handler_service=node_handler_service,
    execution_log_service=execution_log_service
)

flow_resumption_service = FlowResumptionService(
    log_util=log_util,
    flow_db=flow_db,
    flow_execution_service=flow_execution_service
)

product_details_service = ProductDetailsService(
    log_util=log_util,
    flow_db=flow_db,
    messaging_gateway=messaging_gateway,
    execution_log_service=execution_log_service
)

message_router_service = MessageRouterService(
    log_util=log_util,
    flow_db=flow_db,
    flow_execution_service=flow_execution_service,
    flow_resumption_service=flow_resumption_service,
    product_details_service=product_details_service
)

# Define lifespan function
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log_util.info(service_name="FlowEngineService", message="Application startup complete")

    yield

    # Shutdown
    flow_db.close()
    log_util.info(service_name="FlowEngineService", message="Application shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="flow engine service",
    description="Executes chatbot flows over a messaging channel, pausing and resuming on user input",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Flow execution APIs (start, resume, inspect)
flow_execution_router = create_flow_execution_api(
    log_util=log_util,
    flow_db=flow_db,
    flow_execution_service=flow_execution_service,
    flow_resumption_service=flow_resumption_service
)
app.include_router(flow_execution_router)

# Webhook message API (receives normalized channel events)
webhook_message_router = create_webhook_message_api(
    log_util=log_util,
    message_router_service=message_router_service
)
app.include_router(webhook_message_router)

# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "flow_engine_service"}

# Flow exceptions raised outside the routers' own handling
@app.exception_handler(FlowException)
async def flow_exception_handler(request: Request, exc: FlowException):
    log_util.error(service_name="FlowEngineService", message=f"FlowException: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "status_code": exc.status_code
        },
        headers={"Content-Type": "application/json"}
    )

# Global exception handler for HTTPExceptions
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log_util.error(service_name="FlowEngineService", message=f"HTTPException: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error": str(exc),
            "status_code": exc.status_code
        },
        headers={"Content-Type": "application/json"}
    )

# Global exception handler for any unhandled exceptions
@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    log_util.error(service_name="FlowEngineService", message=f"Exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "status_code": 500
        },
        headers={"Content-Type": "application/json"}
    )

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=environment_utils.get_env_variable("HOST"),
        port=environment_utils.get_env_variable("PORT")
    )

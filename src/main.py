import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from utils.lock_utils import ConversationLockRegistry

# Database
from database.flow_db import FlowDB

# Services
from services.flow_validator_service import FlowValidatorService
from services.flow_template_service import FlowTemplateService
from services.flow_service import FlowService
from services.condition_service import ConditionService
from services.reply_validation_service import ReplyValidationService
from services.action_executor_service import ActionExecutorService, IntegrationExecutorService
from services.conversation_engine_service import ConversationEngineService
from services.static_message_processor_service import StaticMessageProcessorService
from services.dynamic_message_processor_service import DynamicMessageProcessorService

# APIs
from apis.flow_api import create_flow_api
from apis.conversation_api import create_conversation_api

# Exceptions
from exceptions.flow_exception import FlowException

# Utils
log_util = LogUtil()
environment_utils = EnvironmentUtils(log_util=log_util)

# Database
flow_db = FlowDB(log_util=log_util, environment_utils=environment_utils)

# Flow management
flow_validator_service = FlowValidatorService()
flow_template_service = FlowTemplateService(log_util=log_util)
flow_service = FlowService(
    log_util=log_util,
    flow_db=flow_db,
    flow_validator_service=flow_validator_service,
    flow_template_service=flow_template_service
)

# Conversation runtime
conversation_engine_service = ConversationEngineService(
    log_util=log_util,
    environment_utils=environment_utils,
    flow_db=flow_db,
    condition_service=ConditionService(log_util=log_util),
    reply_validation_service=ReplyValidationService(log_util=log_util),
    action_executor_service=ActionExecutorService(log_util=log_util, environment_utils=environment_utils),
    integration_executor_service=IntegrationExecutorService(log_util=log_util, environment_utils=environment_utils),
    lock_registry=ConversationLockRegistry()
)

dynamic_message_processor_service = DynamicMessageProcessorService(
    log_util=log_util,
    flow_service=flow_service,
    conversation_engine_service=conversation_engine_service,
    static_message_processor_service=StaticMessageProcessorService(
        log_util=log_util,
        environment_utils=environment_utils
    )
)

# Define lifespan function
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await flow_db.ensure_indexes()
    log_util.info(service_name="ConversationFlowService", message="Application startup complete")

    yield

    # Shutdown
    flow_db.close()
    log_util.info(service_name="ConversationFlowService", message="Application shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="conversation flow service",
    description="Multi-tenant conversational flow builder and execution engine",
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

# Flow management APIs
flow_api_router = create_flow_api(
    log_util=log_util,
    flow_service=flow_service
)
app.include_router(flow_api_router)

# Conversation APIs
conversation_api_router = create_conversation_api(
    log_util=log_util,
    dynamic_message_processor_service=dynamic_message_processor_service
)
app.include_router(conversation_api_router)

# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "conversation_flow_service"}

# Domain errors that escaped a router
@app.exception_handler(FlowException)
async def flow_exception_handler(request: Request, exc: FlowException):
    log_util.error(service_name="ConversationFlowService", message=f"{exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.to_dict(),
            "status_code": exc.status_code
        }
    )

# Global exception handler for HTTPExceptions
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log_util.error(service_name="ConversationFlowService", message=f"HTTPException: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "status_code": exc.status_code
        }
    )

# Global exception handler for any unhandled exceptions
@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    log_util.error(service_name="ConversationFlowService", message=f"Exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "status_code": 500
        }
    )

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=environment_utils.get_env_variable("HOST"),
        port=environment_utils.get_env_variable("PORT")
    )

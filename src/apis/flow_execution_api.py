from fastapi import APIRouter
from fastapi.exceptions import HTTPException

# Utils
from utils.log_utils import LogUtil

# Database
from database.flow_db import FlowDB

# Services
from services.flow_execution_service import FlowExecutionService
from services.flow_resumption_service import FlowResumptionService

# Exceptions
from exceptions.flow_exception import FlowException

# Models
from models.request.start_flow_request import StartFlowRequest
from models.request.resume_flow_request import ResumeFlowRequest
from models.response.flow_run_response import FlowRunResponse
from models.response.execution_detail_response import ExecutionDetailResponse


def create_flow_execution_api(
    log_util: LogUtil,
    flow_db: FlowDB,
    flow_execution_service: FlowExecutionService,
    flow_resumption_service: FlowResumptionService
) -> APIRouter:
    router = APIRouter(
        prefix="/flow",
        tags=["flow"],
    )

    @router.post("/execute", response_model=FlowRunResponse)
    async def execute_flow(request: StartFlowRequest) -> FlowRunResponse:
        """
        Start a flow for one subscriber.
        A failing node is reported in the body (success=false), not as an HTTP error.
        """
        try:
            return await flow_execution_service.start_flow(request)
        except FlowException as e:
            log_util.error(service_name="FlowExecutionAPI", message=f"Error executing flow {request.flow_id}: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowExecutionAPI", message=f"Error executing flow {request.flow_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.post("/resume", response_model=FlowRunResponse)
    async def resume_flow(request: ResumeFlowRequest) -> FlowRunResponse:
        try:
            return await flow_resumption_service.resume_flow(request)
        except FlowException as e:
            log_util.error(service_name="FlowExecutionAPI", message=f"Error resuming execution {request.execution_id}: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowExecutionAPI", message=f"Error resuming execution {request.execution_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @router.get("/execution/{execution_id}", response_model=ExecutionDetailResponse)
    async def get_execution_detail(execution_id: str) -> ExecutionDetailResponse:
        """
        Execution status with its node records and collected variables
        """
        try:
            execution = await flow_db.get_execution(execution_id)
            if execution is None:
                raise HTTPException(status_code=404, detail=f"Flow execution {execution_id} not found")

            node_executions = await flow_db.get_node_executions(execution_id)
            user_inputs = await flow_db.get_flow_user_inputs(execution_id)
            return ExecutionDetailResponse(
                execution=execution,
                node_executions=node_executions,
                variables={user_input.variable_name: user_input.user_response for user_input in user_inputs}
            )
        except HTTPException:
            raise
        except FlowException as e:
            log_util.error(service_name="FlowExecutionAPI", message=f"Error getting execution {execution_id}: {e}")
            raise HTTPException(status_code=e.status_code, detail=e.message)
        except Exception as e:
            log_util.error(service_name="FlowExecutionAPI", message=f"Error getting execution {execution_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    return router

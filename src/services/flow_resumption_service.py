"""
Flow Resumption Service
Continues an execution paused at an input node once the subscriber answers.
All continuation state is read back from the execution document.
"""
from typing import Optional, TYPE_CHECKING

from utils.log_utils import LogUtil
from exceptions.flow_exception import (
    FlowException,
    FlowNotFoundException,
    FlowValidationException,
    ExecutionStateException,
)
from models.execution_data import FlowExecutionData, ExecutionStatus, ExecutionContinuation
from models.request.resume_flow_request import ResumeFlowRequest
from models.response.flow_run_response import FlowRunResponse
from services.flow_execution_service import FlowExecutionService
from services.node_handler_service import ExecutionContext

if TYPE_CHECKING:
    from database.flow_db import FlowDB


class FlowResumptionService:
    def __init__(self, log_util: LogUtil, flow_db: "FlowDB", flow_execution_service: FlowExecutionService):
        self.log_util = log_util
        self.flow_db = flow_db
        self.flow_execution_service = flow_execution_service

    async def resume_flow(self, request: ResumeFlowRequest) -> FlowRunResponse:
        """
        Bind the user's answer to the paused variable and continue the run.

        The waiting_for_input -> running transition is a conditional update, so of
        two concurrent resumes only one claims the execution.

        Raises:
            FlowNotFoundException: no execution with this id
            ExecutionStateException: the execution is not waiting for input
        """
        execution_id = request.execution_id
        self.log_util.info(
            service_name="FlowResumptionService",
            message=f"[RESUME] Resuming execution {execution_id}"
        )

        execution = await self.flow_db.get_execution(execution_id)
        if execution is None:
            raise FlowNotFoundException(f"Flow execution {execution_id} not found")
        if execution.is_terminal():
            raise ExecutionStateException(f"Flow execution {execution_id} has already {execution.status.value}")
        if execution.status != ExecutionStatus.WAITING_FOR_INPUT:
            raise ExecutionStateException(
                f"Flow execution {execution_id} is {execution.status.value}, not waiting for input"
            )

        claimed = await self.flow_db.claim_waiting_execution(execution_id)
        if claimed is None:
            raise ExecutionStateException(f"Flow execution {execution_id} was already resumed")

        continuation = claimed.continuation
        if continuation is None:
            return await self._abort(claimed, "Paused execution has no continuation")

        try:
            return await self._continue(claimed, continuation, request)
        except Exception as e:
            # Continuation is already cleared, the execution can never be resumed again
            try:
                await self._abort(claimed, e.message if isinstance(e, FlowException) else str(e))
            except Exception as abort_error:
                self.log_util.error(
                    service_name="FlowResumptionService",
                    message=f"[RESUME] Could not mark execution {claimed.id} failed: {str(abort_error)}"
                )
            raise

    async def _continue(
        self,
        claimed: FlowExecutionData,
        continuation: ExecutionContinuation,
        request: ResumeFlowRequest
    ) -> FlowRunResponse:
        execution_id = claimed.id
        await self.flow_db.save_flow_user_input(
            execution_id,
            continuation.variable_name,
            request.user_response,
            continuation.input_node_id
        )
        self.log_util.info(
            service_name="FlowResumptionService",
            message=f"[RESUME] Stored '{continuation.variable_name}' for execution {execution_id}"
        )

        if not continuation.next_node_id:
            await self.flow_db.finish_execution(execution_id, ExecutionStatus.COMPLETED)
            self.log_util.info(
                service_name="FlowResumptionService",
                message=f"[RESUME] No node after input {continuation.input_node_id}, execution {execution_id} completed"
            )
            return FlowRunResponse(
                success=True,
                message="Flow completed",
                execution_id=execution_id,
                execution_status=ExecutionStatus.COMPLETED.value
            )

        flow, graph = await self.flow_execution_service.load_graph(claimed.flow_id)
        next_node = graph.get_node(continuation.next_node_id)
        access_token = request.channel_access_token or await self._stored_access_token(claimed.page_id)
        if not access_token:
            raise FlowValidationException(f"No page access token available for page {claimed.page_id}")

        context = ExecutionContext(
            execution_id=execution_id,
            flow_id=claimed.flow_id,
            user_id=claimed.user_id or flow.user_id,
            subscriber_id=claimed.subscriber_id,
            channel_access_token=access_token,
            conversation_id=request.conversation_id,
            graph=graph
        )
        running = claimed.model_copy(update={"status": ExecutionStatus.RUNNING, "continuation": None})
        return await self.flow_execution_service.execute(running, next_node, context)

    async def _stored_access_token(self, page_id: Optional[str]) -> Optional[str]:
        if not page_id:
            return None
        page = await self.flow_db.get_page(page_id)
        return page.page_access_token if page else None

    async def _abort(self, execution: FlowExecutionData, error_message: str) -> FlowRunResponse:
        await self.flow_db.finish_execution(execution.id, ExecutionStatus.FAILED, error_message=error_message)
        self.log_util.error(
            service_name="FlowResumptionService",
            message=f"[RESUME] Execution {execution.id} failed: {error_message}"
        )
        return FlowRunResponse(
            success=False,
            message="Flow resumption failed",
            execution_id=execution.id,
            execution_status=ExecutionStatus.FAILED.value,
            error=error_message
        )

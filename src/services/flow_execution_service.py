"""
Flow Execution Service
Entry point for starting a flow and the interpreter loop that walks the graph
one node at a time until the run completes, fails or pauses for input.
"""
from typing import Optional, Tuple, Callable, Awaitable, TYPE_CHECKING
import asyncio
import time

from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from exceptions.flow_exception import (
    FlowNotFoundException,
    FlowDefinitionException,
    NodeExecutionException,
)
from models.flow_data import FlowData, FlowNode, NodeType
from models.execution_data import FlowExecutionData, ExecutionStatus
from models.request.start_flow_request import StartFlowRequest
from models.response.flow_run_response import FlowRunResponse
from services.flow_graph import FlowGraph
from services.node_handler_service import NodeHandlerService, ExecutionContext
from services.execution_log_service import ExecutionLogService

if TYPE_CHECKING:
    from database.flow_db import FlowDB

# Nodes that send nothing, no pause is applied after them
UNPACED_NODE_TYPES = {NodeType.START.value, NodeType.CONDITION.value, NodeType.SEQUENCE.value}


class FlowExecutionService:
    """
    Graph interpreter.

    Node failures are fail-fast: the failing node gets an error record, the
    execution is marked failed and nothing after it runs. Messages already sent
    are not rolled back and failed nodes are never retried.
    """

    def __init__(
        self,
        log_util: LogUtil,
        environment_utils: EnvironmentUtils,
        flow_db: "FlowDB",
        node_handler_service: NodeHandlerService,
        execution_log_service: ExecutionLogService,
        message_interval_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.node_handler_service = node_handler_service
        self.execution_log_service = execution_log_service
        self.sleep = sleep

        if message_interval_seconds is None:
            message_interval_seconds = float(environment_utils.get_env_variable("MESSAGE_INTERVAL_SECONDS"))
        self.message_interval_seconds = message_interval_seconds

    async def load_graph(self, flow_id: str) -> Tuple[FlowData, FlowGraph]:
        """
        Load a flow and compile it.

        Raises:
            FlowNotFoundException: the flow does not exist
            FlowDefinitionException: the flow cannot be executed as authored
        """
        flow = await self.flow_db.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundException(f"Flow {flow_id} not found")
        return flow, FlowGraph(flow)

    async def start_flow(self, request: StartFlowRequest) -> FlowRunResponse:
        """
        Create a new execution and run it from the start node,
        or from request.start_from_node_id when given.
        Definition problems are raised before the execution is created.
        """
        self.log_util.info(
            service_name="FlowExecutionService",
            message=f"[START] Starting flow {request.flow_id} for subscriber {request.subscriber_id}"
                    + (f" from node {request.start_from_node_id}" if request.start_from_node_id else "")
        )

        flow, graph = await self.load_graph(request.flow_id)

        if request.start_from_node_id:
            if not graph.has_node(request.start_from_node_id):
                raise FlowDefinitionException(
                    f"Specified start node {request.start_from_node_id} not found in flow {request.flow_id}"
                )
            first_node = graph.get_node(request.start_from_node_id)
        else:
            first_node = graph.start_node()

        execution = await self.flow_db.create_execution(FlowExecutionData(
            flow_id=flow.id or request.flow_id,
            user_id=flow.user_id,
            page_id=flow.page_id,
            subscriber_id=request.subscriber_id
        ))

        context = ExecutionContext(
            execution_id=execution.id,
            flow_id=execution.flow_id,
            user_id=flow.user_id,
            subscriber_id=request.subscriber_id,
            channel_access_token=request.channel_access_token,
            conversation_id=request.conversation_id,
            graph=graph
        )
        return await self.execute(execution, first_node, context)

    async def execute(self, execution: FlowExecutionData, first_node: FlowNode, context: ExecutionContext) -> FlowRunResponse:
        """
        Run nodes starting at first_node until there is no next node,
        a node pauses for input, a branch node halts, or a node fails.

        Args:
            execution: Execution already in running status
            first_node: Node to run first
            context: Run context shared by all handlers

        Returns:
            FlowRunResponse describing how the run ended
        """
        try:
            return await self._run(execution, first_node, context)
        except Exception as e:
            await self._mark_failed(execution, e)
            raise

    async def _run(self, execution: FlowExecutionData, first_node: FlowNode, context: ExecutionContext) -> FlowRunResponse:
        graph = context.graph
        current: Optional[FlowNode] = first_node

        while current is not None:
            if current.type == NodeType.START.value:
                current = self._resolve_next(graph, current, None)
                continue

            started = time.perf_counter()
            try:
                result = await self.node_handler_service.handle(current, context)
            except Exception as e:
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                return await self._fail(execution, current, elapsed_ms, e)

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            await self.execution_log_service.record_success(execution.id, current.id, current.type, elapsed_ms)

            if result.continuation is not None:
                paused = await self.flow_db.pause_execution(execution.id, result.continuation)
                if not paused:
                    return await self._pause_not_persisted(execution, current)
                self.log_util.info(
                    service_name="FlowExecutionService",
                    message=f"[PAUSE] Execution {execution.id} waiting for '{result.continuation.variable_name}' at node {current.id}"
                )
                return FlowRunResponse(
                    success=True,
                    message="Flow paused, waiting for user input",
                    execution_id=execution.id,
                    execution_status=ExecutionStatus.WAITING_FOR_INPUT.value
                )

            if result.halt:
                self.log_util.info(
                    service_name="FlowExecutionService",
                    message=f"[EXECUTE] Options sent at node {current.id}, run ends until the subscriber picks one"
                )
                break

            next_node = self._resolve_next(graph, current, result.branch)
            if next_node is not None and current.type not in UNPACED_NODE_TYPES and self.message_interval_seconds > 0:
                await self.sleep(self.message_interval_seconds)
            current = next_node

        await self.flow_db.finish_execution(execution.id, ExecutionStatus.COMPLETED)
        self.log_util.info(
            service_name="FlowExecutionService",
            message=f"[EXECUTE] Execution {execution.id} of flow {execution.flow_id} completed"
        )
        return FlowRunResponse(
            success=True,
            message="Flow executed successfully",
            execution_id=execution.id,
            execution_status=ExecutionStatus.COMPLETED.value
        )

    def _resolve_next(self, graph: FlowGraph, node: FlowNode, branch: Optional[str]) -> Optional[FlowNode]:
        if branch is not None:
            next_node_id = graph.next_node_id(node.id, branch)
            if next_node_id is None:
                self.log_util.info(
                    service_name="FlowExecutionService",
                    message=f"[EXECUTE] No '{branch}' edge from node {node.id}, run ends"
                )
        else:
            next_node_id = graph.default_successor(node)
        return graph.get_node(next_node_id) if next_node_id else None

    async def _fail(self, execution: FlowExecutionData, node: FlowNode, elapsed_ms: int, error: Exception) -> FlowRunResponse:
        failure = NodeExecutionException(
            f"Node {node.id} execution failed: {str(error)}",
            node_id=node.id,
            execution_id=execution.id
        )
        await self.execution_log_service.record_error(execution.id, node.id, node.type, elapsed_ms, str(error))
        await self.flow_db.finish_execution(execution.id, ExecutionStatus.FAILED, error_message=failure.message)

        self.log_util.error(
            service_name="FlowExecutionService",
            message=f"[EXECUTE] Execution {execution.id} failed: {failure.message}"
        )
        return FlowRunResponse(
            success=False,
            message="Flow execution failed",
            execution_id=execution.id,
            execution_status=ExecutionStatus.FAILED.value,
            error=failure.message
        )

    async def _pause_not_persisted(self, execution: FlowExecutionData, node: FlowNode) -> FlowRunResponse:
        """The execution left running before the pause was stored; report what is stored instead."""
        stored = await self.flow_db.get_execution(execution.id)
        status = stored.status if stored is not None else ExecutionStatus.FAILED
        self.log_util.warning(
            service_name="FlowExecutionService",
            message=f"[PAUSE] Execution {execution.id} was {status.value} when pausing at node {node.id}"
        )
        return FlowRunResponse(
            success=status != ExecutionStatus.FAILED,
            message=f"Flow pause not persisted, execution is {status.value}",
            execution_id=execution.id,
            execution_status=status.value,
            error=stored.error_message if stored is not None else None
        )

    async def _mark_failed(self, execution: FlowExecutionData, error: Exception) -> None:
        """Best effort: an execution must not stay running after an unexpected error."""
        self.log_util.error(
            service_name="FlowExecutionService",
            message=f"[EXECUTE] Execution {execution.id} aborted: {str(error)}"
        )
        try:
            await self.flow_db.finish_execution(
                execution.id, ExecutionStatus.FAILED, error_message=f"Flow execution aborted: {str(error)}"
            )
        except Exception as cleanup_error:
            self.log_util.error(
                service_name="FlowExecutionService",
                message=f"[EXECUTE] Could not mark execution {execution.id} failed: {str(cleanup_error)}"
            )

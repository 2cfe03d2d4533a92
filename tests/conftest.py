"""Shared pytest fixtures and in-memory collaborators for engine tests."""

import itertools
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, Mock

import pytest

from exceptions.flow_exception import MessagingGatewayException
from models.ai_config import AIProviderConfig
from models.execution_data import ExecutionContinuation, ExecutionStatus, FlowExecutionData
from models.flow_data import FlowData
from models.flow_user_input import FlowUserInput
from models.message_log_data import MessageLogData
from models.node_execution_data import NodeExecutionData
from models.outbound_message import OutboundMessage
from models.page_data import PageData
from models.product_data import ProductData
from services.ai_provider import AIProvider
from services.execution_log_service import ExecutionLogService
from services.flow_execution_service import FlowExecutionService
from services.flow_resumption_service import FlowResumptionService
from services.message_router_service import MessageRouterService
from services.messaging_gateway import MessagingGateway
from services.node_handler_service import NodeHandlerService
from services.product_details_service import ProductDetailsService
from services.variable_service import VariableService
from utils.environment_utils import EnvironmentUtils
from utils.log_utils import LogUtil


# =============================================================================
# Flow builders
# =============================================================================


def node(node_id: str, node_type: str, **data: Any) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "position": {"x": 0, "y": 0}, "data": data}


def edge(source: str, target: str, handle: Optional[str] = None) -> Dict[str, Any]:
    return {"id": f"e-{source}-{target}-{handle or 'default'}", "source": source, "target": target, "sourceHandle": handle}


def make_flow(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]], flow_id: str = "flow-1", **fields: Any) -> FlowData:
    document = {
        "id": flow_id,
        "name": fields.pop("name", "Test flow"),
        "user_id": fields.pop("user_id", "owner-1"),
        "page_id": fields.pop("page_id", "page-1"),
        "nodes": nodes,
        "edges": edges,
    }
    document.update(fields)
    return FlowData.model_validate(document)


# =============================================================================
# In-memory collaborators
# =============================================================================


class FakeFlowDB:
    """Dict-backed stand-in exposing the FlowDB coroutine interface."""

    def __init__(self):
        self.flows: Dict[str, FlowData] = {}
        self.pages: Dict[str, PageData] = {}
        self.ai_configs: Dict[str, AIProviderConfig] = {}
        self.products: Dict[str, ProductData] = {}
        self.executions: Dict[str, FlowExecutionData] = {}
        self.status_history: Dict[str, List[ExecutionStatus]] = {}
        self.node_executions: List[NodeExecutionData] = []
        self.user_inputs: Dict[Tuple[str, str], FlowUserInput] = {}
        self.messages: List[MessageLogData] = []
        self._ids = itertools.count(1)

    # Seeding helpers
    def add_flow(self, flow: FlowData) -> FlowData:
        self.flows[flow.id] = flow
        return flow

    def add_page(self, page_id: str = "page-1", token: Optional[str] = "stored-token") -> PageData:
        page = PageData(page_id=page_id, page_access_token=token, user_id="owner-1")
        self.pages[page_id] = page
        return page

    def _set_status(self, execution_id: str, **update: Any) -> None:
        execution = self.executions[execution_id]
        self.executions[execution_id] = execution.model_copy(update={**update, "updated_at": datetime.utcnow()})
        if "status" in update:
            self.status_history[execution_id].append(update["status"])

    # Flows and pages
    async def get_flow(self, flow_id: str) -> Optional[FlowData]:
        return self.flows.get(flow_id)

    async def get_active_flows_by_page(self, page_id: str) -> List[FlowData]:
        return [flow for flow in self.flows.values() if flow.page_id == page_id and flow.is_active]

    async def get_page(self, page_id: str) -> Optional[PageData]:
        return self.pages.get(page_id)

    async def get_ai_config(self, user_id: str) -> Optional[AIProviderConfig]:
        return self.ai_configs.get(user_id)

    async def get_products_by_ids(self, product_ids: List[str]) -> List[ProductData]:
        return [self.products[pid] for pid in product_ids if pid in self.products]

    # Executions
    async def create_execution(self, execution: FlowExecutionData) -> FlowExecutionData:
        execution_id = f"exec-{next(self._ids)}"
        created = execution.model_copy(update={"id": execution_id})
        self.executions[execution_id] = created
        self.status_history[execution_id] = [created.status]
        return created

    async def get_execution(self, execution_id: str) -> Optional[FlowExecutionData]:
        return self.executions.get(execution_id)

    async def get_latest_waiting_execution(self, page_id: str, subscriber_id: str) -> Optional[FlowExecutionData]:
        waiting = [
            execution for execution in self.executions.values()
            if execution.page_id == page_id
            and execution.subscriber_id == subscriber_id
            and execution.status == ExecutionStatus.WAITING_FOR_INPUT
        ]
        return max(waiting, key=lambda execution: execution.triggered_at) if waiting else None

    async def pause_execution(self, execution_id: str, continuation: ExecutionContinuation) -> bool:
        if self.executions[execution_id].status != ExecutionStatus.RUNNING:
            return False
        self._set_status(execution_id, status=ExecutionStatus.WAITING_FOR_INPUT, continuation=continuation)
        return True

    async def claim_waiting_execution(self, execution_id: str) -> Optional[FlowExecutionData]:
        before = self.executions.get(execution_id)
        if before is None or before.status != ExecutionStatus.WAITING_FOR_INPUT:
            return None
        self._set_status(execution_id, status=ExecutionStatus.RUNNING, continuation=None)
        return before

    async def finish_execution(self, execution_id: str, status: ExecutionStatus, error_message: Optional[str] = None) -> bool:
        if self.executions[execution_id].is_terminal():
            return False
        self._set_status(
            execution_id,
            status=status,
            error_message=error_message,
            continuation=None,
            completed_at=datetime.utcnow()
        )
        return True

    # Logs and variables
    async def save_node_execution(self, record: NodeExecutionData) -> NodeExecutionData:
        saved = record.model_copy(update={"id": f"node-exec-{next(self._ids)}"})
        self.node_executions.append(saved)
        return saved

    async def get_node_executions(self, execution_id: str) -> List[NodeExecutionData]:
        return [record for record in self.node_executions if record.flow_execution_id == execution_id]

    async def save_flow_user_input(self, execution_id: str, variable_name: str, user_response: str,
                                   input_node_id: Optional[str] = None) -> FlowUserInput:
        key = (execution_id, variable_name)
        existing = self.user_inputs.pop(key, None)
        saved = FlowUserInput(
            id=existing.id if existing else f"input-{next(self._ids)}",
            flow_execution_id=execution_id,
            variable_name=variable_name,
            user_response=user_response,
            input_node_id=input_node_id,
            created_at=existing.created_at if existing else datetime.utcnow()
        )
        # Re-inserted at the end so iteration order follows updated_at
        self.user_inputs[key] = saved
        return saved

    async def get_flow_user_inputs(self, execution_id: str) -> List[FlowUserInput]:
        return [value for (owner, _), value in self.user_inputs.items() if owner == execution_id]

    async def save_message_log(self, message_log: MessageLogData) -> Optional[MessageLogData]:
        self.messages.append(message_log)
        return message_log

    # Inspection helpers
    def records_for(self, execution_id: str) -> List[NodeExecutionData]:
        return [record for record in self.node_executions if record.flow_execution_id == execution_id]


class FakeMessagingGateway(MessagingGateway):
    """Records every send; fails when fail_when(message) is true."""

    def __init__(self, fail_when: Optional[Callable[[OutboundMessage], bool]] = None):
        self.sent: List[Tuple[str, str, OutboundMessage]] = []
        self.fail_when = fail_when

    async def send(self, access_token: str, recipient_id: str, message: OutboundMessage) -> Optional[str]:
        if self.fail_when is not None and self.fail_when(message):
            raise MessagingGatewayException("(#100) Invalid parameter")
        self.sent.append((access_token, recipient_id, message))
        return f"mid.{len(self.sent)}"

    @property
    def messages(self) -> List[OutboundMessage]:
        return [message for _, _, message in self.sent]

    @property
    def texts(self) -> List[str]:
        return [getattr(message, "text", None) for message in self.messages]


class FakeAIProvider(AIProvider):
    def __init__(self, reply: str = "AI says hi"):
        self.reply = reply
        self.calls: List[Tuple[str, AIProviderConfig]] = []

    async def complete(self, prompt: str, config: AIProviderConfig) -> str:
        self.calls.append((prompt, config))
        return self.reply


class Engine:
    """All engine services wired against the fakes."""

    def __init__(self, log_util, environment_utils, flow_db, gateway, ai_provider, sleep, message_interval_seconds=0):
        self.flow_db = flow_db
        self.gateway = gateway
        self.ai_provider = ai_provider
        self.sleep = sleep
        self.variable_service = VariableService(log_util=log_util, flow_db=flow_db)
        self.execution_log_service = ExecutionLogService(log_util=log_util, flow_db=flow_db)
        self.node_handler_service = NodeHandlerService(
            log_util=log_util,
            environment_utils=environment_utils,
            flow_db=flow_db,
            messaging_gateway=gateway,
            ai_provider=ai_provider,
            variable_service=self.variable_service,
            execution_log_service=self.execution_log_service,
            sleep=sleep
        )
        self.flow_execution_service = FlowExecutionService(
            log_util=log_util,
            environment_utils=environment_utils,
            flow_db=flow_db,
            node_handler_service=self.node_handler_service,
            execution_log_service=self.execution_log_service,
            message_interval_seconds=message_interval_seconds,
            sleep=sleep
        )
        self.flow_resumption_service = FlowResumptionService(
            log_util=log_util,
            flow_db=flow_db,
            flow_execution_service=self.flow_execution_service
        )
        self.product_details_service = ProductDetailsService(
            log_util=log_util,
            flow_db=flow_db,
            messaging_gateway=gateway,
            execution_log_service=self.execution_log_service,
            sleep=sleep
        )
        self.message_router_service = MessageRouterService(
            log_util=log_util,
            flow_db=flow_db,
            flow_execution_service=self.flow_execution_service,
            flow_resumption_service=self.flow_resumption_service,
            product_details_service=self.product_details_service
        )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def log_util():
    return Mock(spec=LogUtil)


@pytest.fixture
def environment_utils(log_util, monkeypatch):
    monkeypatch.delenv("MESSAGE_INTERVAL_SECONDS", raising=False)
    monkeypatch.delenv("DEFAULT_AI_PROVIDER", raising=False)
    monkeypatch.delenv("DEFAULT_AI_MODEL", raising=False)
    return EnvironmentUtils(log_util=log_util)


@pytest.fixture
def flow_db():
    return FakeFlowDB()


@pytest.fixture
def gateway():
    return FakeMessagingGateway()


@pytest.fixture
def ai_provider():
    return FakeAIProvider()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def engine(log_util, environment_utils, flow_db, gateway, ai_provider, sleep):
    return Engine(log_util, environment_utils, flow_db, gateway, ai_provider, sleep)

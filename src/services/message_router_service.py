"""
Message Router Service
Decides what an inbound channel event means for automation:
an option click, an answer to a paused input, a trigger keyword, or nothing.
"""
from typing import Optional, Dict, Any, List, Tuple, TYPE_CHECKING
import json

from utils.log_utils import LogUtil
from models.flow_data import FlowData
from models.request.inbound_message_request import InboundMessageRequest
from models.request.start_flow_request import StartFlowRequest
from models.request.resume_flow_request import ResumeFlowRequest
from models.response.message_route_response import MessageRouteResponse
from services.flow_graph import FlowGraph
from services.flow_execution_service import FlowExecutionService
from services.flow_resumption_service import FlowResumptionService
from services.product_details_service import ProductDetailsService

if TYPE_CHECKING:
    from database.flow_db import FlowDB

ACTION_RESUMED = "resumed"
ACTION_STARTED_FROM_NODE = "started_from_node"
ACTION_STARTED_FLOW = "started_flow"
ACTION_TRIGGERED = "triggered"
ACTION_PRODUCT_DETAILS = "product_details"
ACTION_NONE = "none"

# Postback actions of product card "More Info" buttons -> whether the product sells externally
PRODUCT_DETAILS_ACTIONS = {"product_details": False, "product_external_details": True}


class MessageRouterService:
    def __init__(
        self,
        log_util: LogUtil,
        flow_db: "FlowDB",
        flow_execution_service: FlowExecutionService,
        flow_resumption_service: FlowResumptionService,
        product_details_service: ProductDetailsService
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.flow_execution_service = flow_execution_service
        self.flow_resumption_service = flow_resumption_service
        self.product_details_service = product_details_service

    @staticmethod
    def parse_payload(payload: Optional[str]) -> Optional[Dict[str, Any]]:
        if not payload:
            return None
        try:
            data = json.loads(payload)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def route_message(self, request: InboundMessageRequest) -> MessageRouteResponse:
        """
        Route one inbound event.

        Order:
            1. JSON option payload {type: next_message, nodeId} -> start the owning flow from that node
            2. JSON option payload {type: start_flow, flowId} -> start that flow
            3. JSON product payload {action: product_details | product_external_details, product_id} -> send product details
            4. Non-JSON payload -> treated as a click on the node with that id
            5. Text while an execution waits for this subscriber -> resume the latest one
            6. Text containing an active flow's trigger keyword -> start that flow
        """
        raw_payload = request.quick_reply_payload or request.postback_payload
        payload = self.parse_payload(raw_payload)

        self.log_util.info(
            service_name="MessageRouterService",
            message=f"[ROUTE] Event from {request.sender} on page {request.page_id}: "
                    f"text={'present' if request.text else 'None'}, payload={raw_payload}"
        )

        if payload is not None:
            return await self._route_payload(request, payload)

        if raw_payload:
            routed = await self._route_node_click(request, raw_payload)
            if routed is not None:
                return routed

        if not request.text:
            return MessageRouteResponse(action=ACTION_NONE)

        waiting = await self.flow_db.get_latest_waiting_execution(request.page_id, request.sender)
        if waiting is not None:
            run = await self.flow_resumption_service.resume_flow(ResumeFlowRequest(
                execution_id=waiting.id,
                user_response=request.text,
                conversation_id=request.conversation_id
            ))
            return MessageRouteResponse(action=ACTION_RESUMED, flow_id=waiting.flow_id, run=run)

        text_lower = request.text.lower()
        for flow in await self.flow_db.get_active_flows_by_page(request.page_id):
            if flow.trigger_keyword and flow.trigger_keyword.lower() in text_lower:
                self.log_util.info(
                    service_name="MessageRouterService",
                    message=f"[ROUTE] Flow {flow.id} triggered by keyword '{flow.trigger_keyword}'"
                )
                return await self._start(request, flow.id, ACTION_TRIGGERED)

        self.log_util.info(
            service_name="MessageRouterService",
            message=f"[ROUTE] No automation for message from {request.sender}"
        )
        return MessageRouteResponse(action=ACTION_NONE)

    async def _route_payload(self, request: InboundMessageRequest, payload: Dict[str, Any]) -> MessageRouteResponse:
        payload_type = payload.get("type")

        if payload_type == "next_message" and payload.get("nodeId"):
            node_id = payload["nodeId"]
            located = await self._find_flow_with_node(request.page_id, node_id)
            if located is None:
                self.log_util.warning(
                    service_name="MessageRouterService",
                    message=f"[ROUTE] Node {node_id} not found in any active flow of page {request.page_id}"
                )
                return MessageRouteResponse(action=ACTION_NONE)
            flow, _ = located
            return await self._start(request, flow.id, ACTION_STARTED_FROM_NODE, start_from_node_id=node_id)

        if payload_type == "start_flow" and payload.get("flowId"):
            return await self._start(request, payload["flowId"], ACTION_STARTED_FLOW)

        if payload.get("action") in PRODUCT_DETAILS_ACTIONS and payload.get("product_id"):
            return await self._send_product_details(request, str(payload["product_id"]), PRODUCT_DETAILS_ACTIONS[payload["action"]])

        self.log_util.info(
            service_name="MessageRouterService",
            message=f"[ROUTE] Payload {payload} has no flow action"
        )
        return MessageRouteResponse(action=ACTION_NONE)

    async def _send_product_details(self, request: InboundMessageRequest, product_id: str, external: bool) -> MessageRouteResponse:
        page = await self.flow_db.get_page(request.page_id)
        if page is None or not page.page_access_token:
            self.log_util.warning(
                service_name="MessageRouterService",
                message=f"[ROUTE] No access token stored for page {request.page_id}, product {product_id} details not sent"
            )
            return MessageRouteResponse(action=ACTION_NONE)

        sent = await self.product_details_service.send_product_details(
            access_token=page.page_access_token,
            recipient_id=request.sender,
            product_id=product_id,
            external=external,
            conversation_id=request.conversation_id
        )
        return MessageRouteResponse(action=ACTION_PRODUCT_DETAILS if sent else ACTION_NONE)

    async def _route_node_click(self, request: InboundMessageRequest, node_id: str) -> Optional[MessageRouteResponse]:
        located = await self._find_flow_with_node(request.page_id, node_id)
        if located is None:
            return None
        flow, graph = located
        next_node_id = graph.default_successor(graph.get_node(node_id))
        if next_node_id is None:
            self.log_util.info(
                service_name="MessageRouterService",
                message=f"[ROUTE] Clicked node {node_id} has no outgoing edge"
            )
            return MessageRouteResponse(action=ACTION_NONE, flow_id=flow.id)
        return await self._start(request, flow.id, ACTION_STARTED_FROM_NODE, start_from_node_id=next_node_id)

    async def _find_flow_with_node(self, page_id: str, node_id: str) -> Optional[Tuple[FlowData, FlowGraph]]:
        flows: List[FlowData] = await self.flow_db.get_active_flows_by_page(page_id)
        for flow in flows:
            if any(node.id == node_id for node in flow.nodes):
                return flow, FlowGraph(flow)
        return None

    async def _start(self, request: InboundMessageRequest, flow_id: str, action: str,
                     start_from_node_id: Optional[str] = None) -> MessageRouteResponse:
        page = await self.flow_db.get_page(request.page_id)
        if page is None or not page.page_access_token:
            self.log_util.warning(
                service_name="MessageRouterService",
                message=f"[ROUTE] No access token stored for page {request.page_id}, flow {flow_id} not started"
            )
            return MessageRouteResponse(action=ACTION_NONE, flow_id=flow_id)

        run = await self.flow_execution_service.start_flow(StartFlowRequest(
            flow_id=flow_id,
            subscriber_id=request.sender,
            channel_access_token=page.page_access_token,
            conversation_id=request.conversation_id,
            start_from_node_id=start_from_node_id
        ))
        return MessageRouteResponse(action=action, flow_id=flow_id, run=run)

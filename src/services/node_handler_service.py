"""
Node Handler Service
One handler per node type. A handler performs at most one outbound send and
returns a NodeResult telling the interpreter how to continue, or raises.
Gateway and AI provider errors are not caught here, they fail the node.
"""
from typing import Optional, List, Dict, Callable, Awaitable, TYPE_CHECKING
from pydantic import BaseModel, ConfigDict
import asyncio
import json

from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from exceptions.flow_exception import FlowServiceException
from models.flow_data import (
    NodeType,
    FlowNode,
    ButtonNode,
    QuickReplyNode,
    CardNodeData,
)
from models.execution_data import ExecutionContinuation
from models.ai_config import AIProviderConfig
from models.product_data import ProductData
from models.outbound_message import (
    OutboundMessage,
    TextMessage,
    ButtonTemplateMessage,
    GenericTemplateMessage,
    MediaAttachmentMessage,
    QuickReply,
    TemplateButton,
    TemplateElement,
    MAX_QUICK_REPLIES,
    MAX_TEMPLATE_BUTTONS,
    MAX_TEMPLATE_ELEMENTS,
)
from services.flow_graph import FlowGraph, TRUE_HANDLE, FALSE_HANDLE
from services.messaging_gateway import MessagingGateway
from services.ai_provider import AIProvider
from services.variable_service import VariableService
from services.execution_log_service import ExecutionLogService

if TYPE_CHECKING:
    from database.flow_db import FlowDB

DEFAULT_TEXT = "Hello!"
DEFAULT_INPUT_PROMPT = "Please provide your response:"
DEFAULT_OPTIONS_PROMPT = "Choose an option:"
DEFAULT_VARIABLE_NAME = "user_input"

# Media node type -> (data field holding the URL, attachment type)
MEDIA_FIELDS = {
    NodeType.IMAGE: ("imageUrl", "image"),
    NodeType.VIDEO: ("videoUrl", "video"),
    NodeType.AUDIO: ("audioUrl", "audio"),
    NodeType.FILE: ("fileUrl", "file"),
}


class ExecutionContext(BaseModel):
    """
    Everything a handler needs to know about the run it is part of
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    execution_id: str
    flow_id: str
    user_id: Optional[str] = None  # Flow owner
    subscriber_id: str
    channel_access_token: str
    conversation_id: Optional[str] = None
    graph: FlowGraph


class NodeResult(BaseModel):
    """
    branch: control-flow handle to follow instead of the default successor
    continuation: set when the node paused the run for user input
    halt: end the run as completed after this node
    """
    branch: Optional[str] = None
    continuation: Optional[ExecutionContinuation] = None
    halt: bool = False


def _payload(data: Dict[str, Optional[str]]) -> str:
    return json.dumps({key: value for key, value in data.items() if value is not None})


def _format_price(price: float) -> str:
    return str(int(price)) if float(price).is_integer() else str(price)


class NodeHandlerService:
    def __init__(
        self,
        log_util: LogUtil,
        environment_utils: EnvironmentUtils,
        flow_db: "FlowDB",
        messaging_gateway: MessagingGateway,
        ai_provider: AIProvider,
        variable_service: VariableService,
        execution_log_service: ExecutionLogService,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.log_util = log_util
        self.environment_utils = environment_utils
        self.flow_db = flow_db
        self.messaging_gateway = messaging_gateway
        self.ai_provider = ai_provider
        self.variable_service = variable_service
        self.execution_log_service = execution_log_service
        self.sleep = sleep

        self.handlers = self._build_handler_table()

        missing = [node_type.value for node_type in NodeType if node_type not in self.handlers]
        if missing:
            raise FlowServiceException(f"No handler registered for node types: {', '.join(missing)}")

    def _build_handler_table(self) -> Dict[NodeType, Callable[[FlowNode, ExecutionContext], Awaitable[NodeResult]]]:
        return {
            NodeType.START: self._handle_start,
            NodeType.TEXT: self._handle_text,
            NodeType.IMAGE: self._handle_media,
            NodeType.VIDEO: self._handle_media,
            NodeType.AUDIO: self._handle_media,
            NodeType.FILE: self._handle_media,
            NodeType.BUTTON: self._handle_button,
            NodeType.QUICK_REPLY: self._handle_quick_reply,
            NodeType.CARD: self._handle_card,
            NodeType.CAROUSEL: self._handle_carousel,
            NodeType.CAROUSEL_ITEM: self._handle_card,
            NodeType.AI: self._handle_ai,
            NodeType.CONDITION: self._handle_condition,
            NodeType.INPUT: self._handle_input,
            NodeType.SEQUENCE: self._handle_sequence,
            NodeType.PRODUCT: self._handle_product,
        }

    async def handle(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        handler = self.handlers[NodeType(node.type)]
        return await handler(node, context)

    async def _send(self, context: ExecutionContext, message: OutboundMessage) -> Optional[str]:
        message_id = await self.messaging_gateway.send(
            context.channel_access_token,
            context.subscriber_id,
            message
        )
        await self.execution_log_service.log_message(context.conversation_id, message, message_id)
        return message_id

    def _skip(self, node: FlowNode, reason: str) -> NodeResult:
        self.log_util.info(
            service_name="NodeHandlerService",
            message=f"[SKIP] {node.type} node {node.id}: {reason}"
        )
        return NodeResult()

    # Attached children

    def _render_child_button(self, graph: FlowGraph, button_node: FlowNode,
                             default_title: Optional[str]) -> Optional[TemplateButton]:
        """
        Render an attached button node as a template button based on its actionType.
        Returns None when the button lacks what its action needs.
        """
        if not isinstance(button_node, ButtonNode):
            return None
        data = button_node.data
        title = data.buttonName or default_title
        if not title:
            return None

        action_type = data.actionType or "next_message"
        if action_type == "url":
            if not data.url:
                return None
            return TemplateButton(type="web_url", title=title, url=data.url)
        if action_type == "call":
            if not data.phoneNumber:
                return None
            return TemplateButton(type="phone_number", title=title, payload=data.phoneNumber)
        if action_type == "start_flow":
            if not data.flowId:
                return None
            return TemplateButton(type="postback", title=title,
                                  payload=_payload({"type": "start_flow", "flowId": data.flowId}))

        next_node_id = graph.default_successor(button_node)
        if next_node_id is None:
            return None
        return TemplateButton(type="postback", title=title,
                              payload=_payload({"type": "next_message", "nodeId": next_node_id}))

    def _render_child_quick_reply(self, graph: FlowGraph, reply_node: FlowNode, title: str) -> QuickReply:
        data = reply_node.data
        action_type = data.actionType or "next_message"
        if action_type == "start_flow":
            payload = _payload({"type": "start_flow", "flowId": data.flowId})
        else:
            payload = _payload({"type": action_type, "nodeId": graph.default_successor(reply_node)})
        return QuickReply(title=title, payload=payload)

    async def _attached_quick_replies(self, node: FlowNode, context: ExecutionContext,
                                      default_title: str) -> List[QuickReply]:
        reply_nodes = [
            child for child in context.graph.children(node.id, "quickReplies")
            if isinstance(child, QuickReplyNode)
        ][:MAX_QUICK_REPLIES]
        quick_replies = []
        for reply_node in reply_nodes:
            title = await self.variable_service.interpolate(
                reply_node.data.replyText or default_title, context.execution_id
            )
            quick_replies.append(self._render_child_quick_reply(context.graph, reply_node, title))
        return quick_replies

    async def _build_card_element(self, card_node: FlowNode, context: ExecutionContext) -> TemplateElement:
        data: CardNodeData = card_node.data
        element = TemplateElement(
            title=await self.variable_service.interpolate(data.title or "Card", context.execution_id),
            subtitle=await self.variable_service.interpolate(data.subtitle, context.execution_id),
            image_url=data.imageUrl or None
        )
        for button_node in context.graph.children(card_node.id, "button", "buttons"):
            button = self._render_child_button(context.graph, button_node, default_title=None)
            if button is not None:
                element.buttons = [button]
                break
        return element

    # Handlers

    async def _handle_start(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        return NodeResult()

    async def _handle_text(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        data = node.data
        text = await self.variable_service.interpolate(data.content or data.label or DEFAULT_TEXT, context.execution_id)

        button_nodes = [
            child for child in context.graph.children(node.id, "buttons")
            if isinstance(child, ButtonNode)
        ][:MAX_TEMPLATE_BUTTONS]
        buttons = []
        for button_node in button_nodes:
            default_title = {"url": "Visit", "call": "Call"}.get(button_node.data.actionType, "Continue")
            button = self._render_child_button(context.graph, button_node, default_title)
            if button is not None:
                buttons.append(button)

        if buttons:
            await self._send(context, ButtonTemplateMessage(text=text, buttons=buttons))
            return NodeResult()

        quick_replies = await self._attached_quick_replies(node, context, "Quick Reply")
        if not quick_replies and data.buttons:
            # Inline quick replies saved by older versions of the editor
            quick_replies = [
                QuickReply(
                    title=button.title or button.label or "Button",
                    payload=button.id or button.title or "Button"
                )
                for button in data.buttons[:MAX_QUICK_REPLIES]
            ]

        await self._send(context, TextMessage(text=text, quick_replies=quick_replies))
        return NodeResult()

    async def _handle_media(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        field_name, media_type = MEDIA_FIELDS[NodeType(node.type)]
        url = getattr(node.data, field_name, None)
        if not url:
            return self._skip(node, f"no {field_name} provided")

        await self._send(context, MediaAttachmentMessage(media_type=media_type, url=url))
        return NodeResult()

    async def _handle_input(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        data = node.data
        prompt = await self.variable_service.interpolate(
            data.promptText or data.content or DEFAULT_INPUT_PROMPT, context.execution_id
        )
        await self._send(context, TextMessage(text=prompt))

        continuation = ExecutionContinuation(
            input_node_id=node.id,
            variable_name=data.variableName or DEFAULT_VARIABLE_NAME,
            next_node_id=context.graph.default_successor(node)
        )
        return NodeResult(continuation=continuation)

    async def _handle_button(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        data = node.data
        if not data.buttons:
            return self._skip(node, "no button options defined")

        buttons = []
        for index, option in enumerate(data.buttons[:MAX_TEMPLATE_BUTTONS]):
            target = option.nextNode or context.graph.option_target(node.id, index, "button")
            title = option.title or option.label or "Button"
            if target:
                payload = _payload({"type": "next_message", "nodeId": target})
            else:
                payload = option.id or title
            buttons.append(TemplateButton(type="postback", title=title, payload=payload))

        text = await self.variable_service.interpolate(
            data.content or data.label or DEFAULT_OPTIONS_PROMPT, context.execution_id
        )
        await self._send(context, ButtonTemplateMessage(text=text, buttons=buttons))
        return NodeResult(halt=True)

    async def _handle_quick_reply(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        data = node.data
        if not data.replies:
            return self._skip(node, "no reply options defined")

        quick_replies = []
        for index, option in enumerate(data.replies[:MAX_QUICK_REPLIES]):
            target = option.nextNode or context.graph.option_target(node.id, index, "reply")
            title = option.title or "Option"
            if target:
                payload = _payload({"type": "next_message", "nodeId": target})
            else:
                payload = option.id or title
            quick_replies.append(QuickReply(title=title, payload=payload))

        text = await self.variable_service.interpolate(
            data.content or data.replyText or data.label or DEFAULT_OPTIONS_PROMPT, context.execution_id
        )
        await self._send(context, TextMessage(text=text, quick_replies=quick_replies))
        return NodeResult(halt=True)

    async def _handle_card(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        element = await self._build_card_element(node, context)
        await self._send(context, GenericTemplateMessage(elements=[element], summary=element.title))
        return NodeResult()

    async def _handle_carousel(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        item_nodes = [
            child for child in context.graph.children(node.id, "items", "cards")
            if child.type in (NodeType.CAROUSEL_ITEM.value, NodeType.CARD.value)
        ][:MAX_TEMPLATE_ELEMENTS]
        if not item_nodes:
            return self._skip(node, "no carousel items attached")

        elements = [await self._build_card_element(item_node, context) for item_node in item_nodes]
        quick_replies = await self._attached_quick_replies(node, context, "Reply")

        summary = await self.variable_service.interpolate(node.data.carouselText, context.execution_id)
        message = GenericTemplateMessage(
            elements=elements,
            quick_replies=quick_replies,
            summary=summary or f"Carousel: {elements[0].title}"
        )
        await self._send(context, message)
        return NodeResult()

    async def _handle_condition(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        result = await self.variable_service.evaluate_condition(node.data.condition, context.execution_id)
        return NodeResult(branch=TRUE_HANDLE if result else FALSE_HANDLE)

    async def _handle_sequence(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        delay = node.data.delay or 0
        if delay > 0:
            self.log_util.info(
                service_name="NodeHandlerService",
                message=f"[SEQUENCE] Waiting {delay}s at node {node.id} (execution {context.execution_id})"
            )
            await self.sleep(delay)
        return NodeResult()

    async def _resolve_ai_config(self, user_id: Optional[str]) -> AIProviderConfig:
        config = await self.flow_db.get_ai_config(user_id) if user_id else None
        if config is not None:
            return config
        return AIProviderConfig(
            provider=self.environment_utils.get_env_variable("DEFAULT_AI_PROVIDER"),
            model=self.environment_utils.get_env_variable("DEFAULT_AI_MODEL")
        )

    async def _handle_ai(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        if not node.data.prompt:
            return self._skip(node, "no AI prompt provided")

        prompt = await self.variable_service.interpolate(node.data.prompt, context.execution_id)
        config = await self._resolve_ai_config(context.user_id)

        self.log_util.info(
            service_name="NodeHandlerService",
            message=f"[AI] Node {node.id} using provider {config.provider} (model {config.model or 'default'})"
        )
        reply = await self.ai_provider.complete(prompt, config)
        await self._send(context, TextMessage(text=reply))
        return NodeResult()

    def _build_product_element(self, product: ProductData, selling_method: str) -> TemplateElement:
        element = TemplateElement(
            title=product.name or "Product",
            image_url=product.image_url or None,
            subtitle=f"Price: ${_format_price(product.price)}" if product.price else None
        )
        if selling_method == "direct_store":
            product_url = product.store_url()
            if product_url:
                element.buttons = [TemplateButton(type="web_url", title="Order Now", url=product_url)]
        else:
            action = "product_details" if selling_method == "details_store" else "product_external_details"
            element.buttons = [TemplateButton(
                type="postback",
                title="More Info",
                payload=json.dumps({"action": action, "product_id": product.id})
            )]
        return element

    async def _handle_product(self, node: FlowNode, context: ExecutionContext) -> NodeResult:
        data = node.data
        if not data.products:
            return self._skip(node, "no products defined")

        products = await self.flow_db.get_products_by_ids(data.products)
        if not products:
            raise FlowServiceException(f"Failed to load product details for node {node.id}")

        elements = [
            self._build_product_element(product, data.productSellingMethod)
            for product in products[:MAX_TEMPLATE_ELEMENTS]
        ]
        summary = "Products: " + ", ".join(product.name or "Product" for product in products[:MAX_TEMPLATE_ELEMENTS])
        await self._send(context, GenericTemplateMessage(elements=elements, summary=summary))
        return NodeResult()

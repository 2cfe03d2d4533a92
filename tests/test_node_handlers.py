import json

import pytest

from conftest import edge, make_flow, node
from exceptions.flow_exception import FlowServiceException, MessagingGatewayException
from models.ai_config import AIProviderConfig
from models.flow_data import NodeType
from models.outbound_message import (
    ButtonTemplateMessage,
    GenericTemplateMessage,
    MediaAttachmentMessage,
    TextMessage,
)
from models.product_data import ProductData, ProductStoreData
from services.flow_graph import FlowGraph
from services.node_handler_service import ExecutionContext, NodeHandlerService


def build_context(flow, conversation_id="conv-1"):
    return ExecutionContext(
        execution_id="exec-1",
        flow_id=flow.id,
        user_id=flow.user_id,
        subscriber_id="psid-1",
        channel_access_token="page-token",
        conversation_id=conversation_id,
        graph=FlowGraph(flow),
    )


async def run_node(engine, flow, node_id, **context_fields):
    context = build_context(flow, **context_fields)
    return await engine.node_handler_service.handle(context.graph.get_node(node_id), context)


def test_every_node_type_has_a_handler(engine):
    assert set(engine.node_handler_service.handlers) == set(NodeType)


def test_missing_handler_rejected_at_construction(engine, log_util, environment_utils, flow_db, gateway, ai_provider):
    class IncompleteHandlerService(NodeHandlerService):
        def _build_handler_table(self):
            handlers = super()._build_handler_table()
            handlers.pop(NodeType.PRODUCT)
            return handlers

    with pytest.raises(FlowServiceException, match="product"):
        IncompleteHandlerService(
            log_util=log_util,
            environment_utils=environment_utils,
            flow_db=flow_db,
            messaging_gateway=gateway,
            ai_provider=ai_provider,
            variable_service=engine.variable_service,
            execution_log_service=engine.execution_log_service
        )


class TestTextHandler:
    @pytest.mark.asyncio
    async def test_plain_text_with_interpolation(self, engine, flow_db, gateway):
        await flow_db.save_flow_user_input("exec-1", "name", "Sam")
        flow = make_flow([node("start", "start"), node("t1", "text", content="Hi {{name}}")], [])

        await run_node(engine, flow, "t1")

        assert len(gateway.sent) == 1
        token, recipient, message = gateway.sent[0]
        assert (token, recipient) == ("page-token", "psid-1")
        assert isinstance(message, TextMessage)
        assert message.text == "Hi Sam"
        assert message.quick_replies == []

    @pytest.mark.asyncio
    async def test_falls_back_to_label_then_default(self, engine, gateway):
        flow = make_flow([node("start", "start"), node("a", "text", label="Label text"), node("b", "text")], [])

        await run_node(engine, flow, "a")
        await run_node(engine, flow, "b")

        assert gateway.texts == ["Label text", "Hello!"]

    @pytest.mark.asyncio
    async def test_attached_buttons_send_button_template(self, engine, gateway):
        flow = make_flow(
            [
                node("start", "start"),
                node("t1", "text", content="Choose"),
                node("b-url", "button", buttonName="Site", actionType="url", url="https://shop.example"),
                node("b-call", "button", buttonName="Call us", actionType="call", phoneNumber="+15550100"),
                node("b-next", "button", buttonName="More", actionType="next_message"),
                node("b-extra", "button", buttonName="Fourth", actionType="start_flow", flowId="flow-2"),
                node("after", "text", content="More info"),
            ],
            [
                edge("t1", "b-url", "buttons"),
                edge("t1", "b-call", "buttons"),
                edge("t1", "b-next", "buttons"),
                edge("t1", "b-extra", "buttons"),
                edge("b-next", "after"),
            ],
        )

        await run_node(engine, flow, "t1")

        message = gateway.messages[0]
        assert isinstance(message, ButtonTemplateMessage)
        assert message.text == "Choose"
        graph_buttons = message.to_graph()["attachment"]["payload"]["buttons"]
        assert graph_buttons == [
            {"type": "web_url", "title": "Site", "url": "https://shop.example"},
            {"type": "phone_number", "title": "Call us", "payload": "+15550100"},
            {"type": "postback", "title": "More", "payload": json.dumps({"type": "next_message", "nodeId": "after"})},
        ]

    @pytest.mark.asyncio
    async def test_start_flow_button_payload(self, engine, gateway):
        flow = make_flow(
            [
                node("start", "start"),
                node("t1", "text", content="Go"),
                node("b1", "button", actionType="start_flow", flowId="flow-2"),
            ],
            [edge("t1", "b1", "buttons")],
        )

        await run_node(engine, flow, "t1")

        button = gateway.messages[0].buttons[0]
        assert button.title == "Continue"
        assert json.loads(button.payload) == {"type": "start_flow", "flowId": "flow-2"}

    @pytest.mark.asyncio
    async def test_unrenderable_buttons_fall_back_to_text(self, engine, gateway):
        flow = make_flow(
            [
                node("start", "start"),
                node("t1", "text", content="Visit"),
                node("b1", "button", buttonName="Site", actionType="url"),
            ],
            [edge("t1", "b1", "buttons")],
        )

        await run_node(engine, flow, "t1")

        assert isinstance(gateway.messages[0], TextMessage)

    @pytest.mark.asyncio
    async def test_attached_quick_replies(self, engine, gateway):
        flow = make_flow(
            [
                node("start", "start"),
                node("t1", "text", content="How was it?"),
                node("q1", "quickReply", replyText="Great"),
                node("q2", "quickReply", replyText="Restart", actionType="start_flow", flowId="flow-9"),
                node("thanks", "text", content="Thanks"),
            ],
            [
                edge("t1", "q1", "quickReplies"),
                edge("t1", "q2", "quickReplies"),
                edge("q1", "thanks"),
            ],
        )

        await run_node(engine, flow, "t1")

        message = gateway.messages[0]
        assert [reply.title for reply in message.quick_replies] == ["Great", "Restart"]
        assert json.loads(message.quick_replies[0].payload) == {"type": "next_message", "nodeId": "thanks"}
        assert json.loads(message.quick_replies[1].payload) == {"type": "start_flow", "flowId": "flow-9"}

    @pytest.mark.asyncio
    async def test_quick_replies_capped_at_thirteen(self, engine, gateway):
        replies = [node(f"q{i}", "quickReply", replyText=f"R{i}") for i in range(15)]
        flow = make_flow(
            [node("start", "start"), node("t1", "text", content="Pick")] + replies,
            [edge("t1", f"q{i}", "quickReplies") for i in range(15)],
        )

        await run_node(engine, flow, "t1")

        assert len(gateway.messages[0].quick_replies) == 13

    @pytest.mark.asyncio
    async def test_legacy_inline_buttons_become_quick_replies(self, engine, gateway):
        flow = make_flow(
            [
                node("start", "start"),
                node("t1", "text", content="Pick", buttons=[{"id": "opt-1", "title": "One"}, {"label": "Two"}]),
            ],
            [],
        )

        await run_node(engine, flow, "t1")

        replies = gateway.messages[0].quick_replies
        assert [(reply.title, reply.payload) for reply in replies] == [("One", "opt-1"), ("Two", "Button")]

    @pytest.mark.asyncio
    async def test_message_logged_with_conversation(self, engine, flow_db):
        flow = make_flow([node("start", "start"), node("t1", "text", content="Hello there")], [])

        await run_node(engine, flow, "t1")

        assert len(flow_db.messages) == 1
        assert flow_db.messages[0].conversation_id == "conv-1"
        assert flow_db.messages[0].message_text == "Hello there"
        assert flow_db.messages[0].message_id == "mid.1"

    @pytest.mark.asyncio
    async def test_no_message_log_without_conversation(self, engine, flow_db):
        flow = make_flow([node("start", "start"), node("t1", "text", content="Hello")], [])

        await run_node(engine, flow, "t1", conversation_id=None)

        assert flow_db.messages == []

    @pytest.mark.asyncio
    async def test_gateway_error_propagates(self, engine, flow_db):
        engine.gateway.fail_when = lambda message: True
        flow = make_flow([node("start", "start"), node("t1", "text", content="Hello")], [])

        with pytest.raises(MessagingGatewayException):
            await run_node(engine, flow, "t1")


class TestMediaHandler:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("node_type, field, media_type", [
        ("image", "imageUrl", "image"),
        ("video", "videoUrl", "video"),
        ("audio", "audioUrl", "audio"),
        ("file", "fileUrl", "file"),
    ])
    async def test_sends_attachment(self, engine, gateway, flow_db, node_type, field, media_type):
        flow = make_flow([node("start", "start"), node("m", node_type, **{field: "https://cdn.example/x"})], [])

        await run_node(engine, flow, "m")

        message = gateway.messages[0]
        assert isinstance(message, MediaAttachmentMessage)
        assert message.to_graph() == {"attachment": {"type": media_type, "payload": {"url": "https://cdn.example/x"}}}
        assert flow_db.messages[0].attachment_type == media_type

    @pytest.mark.asyncio
    async def test_missing_url_is_a_silent_skip(self, engine, gateway):
        flow = make_flow([node("start", "start"), node("img", "image")], [])

        result = await run_node(engine, flow, "img")

        assert gateway.sent == []
        assert result.continuation is None and result.halt is False


class TestInputHandler:
    @pytest.mark.asyncio
    async def test_sends_prompt_and_returns_continuation(self, engine, gateway):
        flow = make_flow(
            [
                node("start", "start"),
                node("ask", "input", promptText="What's your name?", variableName="name"),
                node("next", "text"),
            ],
            [edge("ask", "next")],
        )

        result = await run_node(engine, flow, "ask")

        assert gateway.texts == ["What's your name?"]
        assert result.continuation.input_node_id == "ask"
        assert result.continuation.variable_name == "name"
        assert result.continuation.next_node_id == "next"

    @pytest.mark.asyncio
    async def test_defaults(self, engine, gateway):
        flow = make_flow([node("start", "start"), node("ask", "input")], [])

        result = await run_node(engine, flow, "ask")

        assert gateway.texts == ["Please provide your response:"]
        assert result.continuation.variable_name == "user_input"
        assert result.continuation.next_node_id is None


class TestBranchHandlers:
    @pytest.mark.asyncio
    async def test_button_options_carry_follow_up_node(self, engine, gateway):
        flow = make_flow(
            [
                node("start", "start"),
                node(
                    "menu", "button", content="Pick a plan",
                    buttons=[
                        {"id": "o1", "title": "Basic"},
                        {"id": "o2", "title": "Pro", "nextNode": "pro"},
                        {"id": "o3", "title": "Other"},
                        {"id": "o4", "title": "Dropped"},
                    ],
                ),
                node("basic", "text"),
                node("pro", "text"),
            ],
            [edge("menu", "basic", "button-0")],
        )

        result = await run_node(engine, flow, "menu")

        message = gateway.messages[0]
        assert isinstance(message, ButtonTemplateMessage)
        assert message.text == "Pick a plan"
        assert [button.title for button in message.buttons] == ["Basic", "Pro", "Other"]
        assert json.loads(message.buttons[0].payload) == {"type": "next_message", "nodeId": "basic"}
        assert json.loads(message.buttons[1].payload) == {"type": "next_message", "nodeId": "pro"}
        assert message.buttons[2].payload == "o3"
        assert result.halt is True

    @pytest.mark.asyncio
    async def test_button_without_options_sends_nothing(self, engine, gateway):
        flow = make_flow([node("start", "start"), node("menu", "button", buttonName="Go")], [])

        result = await run_node(engine, flow, "menu")

        assert gateway.sent == []
        assert result.halt is False

    @pytest.mark.asyncio
    async def test_quick_reply_options(self, engine, gateway):
        replies = [{"id": f"r{i}", "title": f"Opt {i}"} for i in range(14)]
        flow = make_flow(
            [node("start", "start"), node("qr", "quickReply", content="Rate us", replies=replies), node("r0-target", "text")],
            [edge("qr", "r0-target", "reply-0")],
        )

        result = await run_node(engine, flow, "qr")

        message = gateway.messages[0]
        assert isinstance(message, TextMessage)
        assert message.text == "Rate us"
        assert len(message.quick_replies) == 13
        assert json.loads(message.quick_replies[0].payload) == {"type": "next_message", "nodeId": "r0-target"}
        assert message.quick_replies[1].payload == "r1"
        assert result.halt is True

    @pytest.mark.asyncio
    async def test_condition_selects_branch(self, engine, flow_db):
        await flow_db.save_flow_user_input("exec-1", "age", "42")
        flow = make_flow(
            [
                node("start", "start"),
                node("c1", "condition", condition={"field": "age", "operator": "greater_than", "value": "18"}),
                node("c2", "condition", condition={"field": "age", "operator": "less_than", "value": "18"}),
            ],
            [],
        )

        assert (await run_node(engine, flow, "c1")).branch == "true"
        assert (await run_node(engine, flow, "c2")).branch == "false"


class TestRichHandlers:
    @pytest.mark.asyncio
    async def test_card_with_attached_button(self, engine, gateway):
        flow = make_flow(
            [
                node("start", "start"),
                node("card", "card", title="Summer sale", subtitle="Up to 50%", imageUrl="https://cdn.example/s.png"),
                node("btn", "button", buttonName="Shop", actionType="url", url="https://shop.example"),
            ],
            [edge("card", "btn", "button")],
        )

        await run_node(engine, flow, "card")

        element = gateway.messages[0].to_graph()["attachment"]["payload"]["elements"][0]
        assert element == {
            "title": "Summer sale",
            "image_url": "https://cdn.example/s.png",
            "subtitle": "Up to 50%",
            "buttons": [{"type": "web_url", "title": "Shop", "url": "https://shop.example"}],
        }

    @pytest.mark.asyncio
    async def test_carousel_sends_one_generic_template(self, engine, gateway, flow_db):
        flow = make_flow(
            [
                node("start", "start"),
                node("car", "carousel", carouselText="Our picks"),
                node("i1", "carouselItem", title="First"),
                node("i2", "carouselItem", title="Second", subtitle="Two"),
                node("i2-btn", "button", buttonName="See", actionType="next_message"),
                node("i2-next", "text"),
                node("stray", "text"),
                node("qr", "quickReply", replyText="Back"),
            ],
            [
                edge("car", "i1", "items"),
                edge("car", "i2", "items"),
                edge("car", "stray", "items"),
                edge("i2", "i2-btn", "button"),
                edge("i2-btn", "i2-next"),
                edge("car", "qr", "quickReplies"),
            ],
        )

        await run_node(engine, flow, "car")

        assert len(gateway.sent) == 1
        message = gateway.messages[0]
        assert isinstance(message, GenericTemplateMessage)
        assert [element.title for element in message.elements] == ["First", "Second"]
        assert message.elements[0].buttons == []
        assert json.loads(message.elements[1].buttons[0].payload) == {"type": "next_message", "nodeId": "i2-next"}
        assert [reply.title for reply in message.quick_replies] == ["Back"]
        assert flow_db.messages[0].message_text == "Our picks"

    @pytest.mark.asyncio
    async def test_carousel_without_items_sends_nothing(self, engine, gateway):
        flow = make_flow([node("start", "start"), node("car", "carousel")], [])

        await run_node(engine, flow, "car")

        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_carousel_item_reached_directly_renders_card(self, engine, gateway):
        flow = make_flow([node("start", "start"), node("i1", "carouselItem", title="Solo")], [])

        await run_node(engine, flow, "i1")

        assert gateway.messages[0].elements[0].title == "Solo"


class TestProductHandler:
    @pytest.fixture
    def products(self, flow_db):
        flow_db.products["p1"] = ProductData(
            id="p1", name="Mug", price=12.0, image_url="https://cdn.example/mug.png",
            store=ProductStoreData(slug="acme")
        )
        flow_db.products["p2"] = ProductData(
            id="p2", name="Tee", price=19.99,
            store=ProductStoreData(slug="acme", custom_domain="shop.acme.test", custom_domain_verified=True)
        )

    @pytest.mark.asyncio
    async def test_direct_store_links_to_store(self, engine, gateway, products):
        flow = make_flow([node("start", "start"), node("prod", "product", products=["p1", "p2"])], [])

        await run_node(engine, flow, "prod")

        elements = gateway.messages[0].to_graph()["attachment"]["payload"]["elements"]
        assert elements[0] == {
            "title": "Mug",
            "image_url": "https://cdn.example/mug.png",
            "subtitle": "Price: $12",
            "buttons": [{"type": "web_url", "title": "Order Now", "url": "https://acme.lovable.app/product/p1"}],
        }
        assert elements[1]["subtitle"] == "Price: $19.99"
        assert elements[1]["buttons"][0]["url"] == "https://shop.acme.test/product/p2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method, action", [
        ("details_store", "product_details"),
        ("external_store", "product_external_details"),
    ])
    async def test_more_info_postback(self, engine, gateway, products, method, action):
        flow = make_flow(
            [node("start", "start"), node("prod", "product", products=["p1"], productSellingMethod=method)], []
        )

        await run_node(engine, flow, "prod")

        button = gateway.messages[0].elements[0].buttons[0]
        assert button.title == "More Info"
        assert json.loads(button.payload) == {"action": action, "product_id": "p1"}

    @pytest.mark.asyncio
    async def test_no_product_ids_is_a_silent_skip(self, engine, gateway):
        flow = make_flow([node("start", "start"), node("prod", "product")], [])

        await run_node(engine, flow, "prod")

        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_unknown_products_fail(self, engine, gateway):
        flow = make_flow([node("start", "start"), node("prod", "product", products=["missing"])], [])

        with pytest.raises(FlowServiceException, match="Failed to load product details"):
            await run_node(engine, flow, "prod")
        assert gateway.sent == []


class TestSequenceAndAIHandlers:
    @pytest.mark.asyncio
    async def test_sequence_sleeps_configured_seconds(self, engine, sleep, gateway):
        flow = make_flow([node("start", "start"), node("wait", "sequence", delay=7200)], [])

        await run_node(engine, flow, "wait")

        sleep.assert_awaited_once_with(7200)
        assert gateway.sent == []

    @pytest.mark.asyncio
    async def test_zero_delay_does_not_sleep(self, engine, sleep):
        flow = make_flow([node("start", "start"), node("wait", "sequence")], [])

        await run_node(engine, flow, "wait")

        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ai_uses_owner_config_and_interpolated_prompt(self, engine, flow_db, ai_provider, gateway):
        flow_db.ai_configs["owner-1"] = AIProviderConfig(provider="openai", model="gpt-4o", api_key="sk-test")
        await flow_db.save_flow_user_input("exec-1", "topic", "tea")
        flow = make_flow([node("start", "start"), node("ai", "ai", prompt="Tell me about {{topic}}")], [])

        await run_node(engine, flow, "ai")

        prompt, config = ai_provider.calls[0]
        assert prompt == "Tell me about tea"
        assert config.provider == "openai"
        assert gateway.texts == ["AI says hi"]

    @pytest.mark.asyncio
    async def test_ai_falls_back_to_default_provider(self, engine, ai_provider):
        flow = make_flow([node("start", "start"), node("ai", "ai", prompt="Hello")], [])

        await run_node(engine, flow, "ai")

        _, config = ai_provider.calls[0]
        assert config.provider == "default"
        assert config.model == "google/gemini-2.5-flash"

    @pytest.mark.asyncio
    async def test_ai_without_prompt_sends_nothing(self, engine, ai_provider, gateway):
        flow = make_flow([node("start", "start"), node("ai", "ai")], [])

        await run_node(engine, flow, "ai")

        assert ai_provider.calls == []
        assert gateway.sent == []

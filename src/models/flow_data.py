from pydantic import BaseModel, Field, Discriminator, ConfigDict
from typing import Optional, List, Union, Literal, Annotated
from datetime import datetime
from enum import Enum


class NodeType(str, Enum):
    START = "start"
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    BUTTON = "button"
    QUICK_REPLY = "quickReply"
    CARD = "card"
    CAROUSEL = "carousel"
    CAROUSEL_ITEM = "carouselItem"
    AI = "ai"
    CONDITION = "condition"
    INPUT = "input"
    SEQUENCE = "sequence"
    PRODUCT = "product"


class NodeData(BaseModel):
    model_config = ConfigDict(extra='allow')  # Authoring UI keeps extra keys on node data

    label: Optional[str] = None


class StartNodeData(NodeData):
    pass

class LegacyQuickReplyButton(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: Optional[str] = None
    title: Optional[str] = None
    label: Optional[str] = None

class TextNodeData(NodeData):
    content: Optional[str] = None
    buttons: Optional[List[LegacyQuickReplyButton]] = None  # Legacy inline quick replies

class ImageNodeData(NodeData):
    imageUrl: Optional[str] = None

class VideoNodeData(NodeData):
    videoUrl: Optional[str] = None

class AudioNodeData(NodeData):
    audioUrl: Optional[str] = None

class FileNodeData(NodeData):
    fileUrl: Optional[str] = None

class ButtonOption(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: Optional[str] = None
    title: Optional[str] = None
    label: Optional[str] = None
    nextNode: Optional[str] = None

class ButtonNodeData(NodeData):
    # Branch usage: a prompt with up to 3 options
    content: Optional[str] = None
    buttons: List[ButtonOption] = []
    # Attachment usage: a single button describing an action
    buttonName: Optional[str] = None
    actionType: str = "next_message"  # "next_message", "start_flow", "url", "call"
    url: Optional[str] = None
    phoneNumber: Optional[str] = None
    flowId: Optional[str] = None

class ReplyOption(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: Optional[str] = None
    title: Optional[str] = None
    nextNode: Optional[str] = None

class QuickReplyNodeData(NodeData):
    # Branch usage: a prompt with up to 13 options
    content: Optional[str] = None
    replies: List[ReplyOption] = []
    # Attachment usage: a single quick reply
    replyText: Optional[str] = None
    actionType: str = "next_message"  # "next_message", "start_flow"
    flowId: Optional[str] = None

class CardNodeData(NodeData):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    imageUrl: Optional[str] = None

class CarouselNodeData(NodeData):
    carouselText: Optional[str] = None

class CarouselItemNodeData(CardNodeData):
    pass

class AINodeData(NodeData):
    prompt: Optional[str] = None

class ConditionSpec(BaseModel):
    model_config = ConfigDict(extra='allow')

    field: Optional[str] = None
    operator: Optional[str] = None
    value: Optional[str] = None

class ConditionNodeData(NodeData):
    condition: Optional[ConditionSpec] = None

class InputNodeData(NodeData):
    promptText: Optional[str] = None
    content: Optional[str] = None
    variableName: Optional[str] = None

class SequenceNodeData(NodeData):
    delay: float = 0  # Seconds, no upper bound

class ProductNodeData(NodeData):
    products: List[str] = []
    productSellingMethod: Literal["direct_store", "details_store", "external_store"] = "direct_store"


class FlowNodePosition(BaseModel):
    x: float = 0
    y: float = 0

# Base FlowNode with common fields
class BaseFlowNode(BaseModel):
    model_config = ConfigDict(extra='allow')  # Allow extra fields like 'measured', 'selected', etc.

    id: str
    type: str
    position: Optional[FlowNodePosition] = None

class StartNode(BaseFlowNode):
    type: Literal["start"]
    data: StartNodeData = Field(default_factory=StartNodeData)

class TextNode(BaseFlowNode):
    type: Literal["text"]
    data: TextNodeData = Field(default_factory=TextNodeData)

class ImageNode(BaseFlowNode):
    type: Literal["image"]
    data: ImageNodeData = Field(default_factory=ImageNodeData)

class VideoNode(BaseFlowNode):
    type: Literal["video"]
    data: VideoNodeData = Field(default_factory=VideoNodeData)

class AudioNode(BaseFlowNode):
    type: Literal["audio"]
    data: AudioNodeData = Field(default_factory=AudioNodeData)

class FileNode(BaseFlowNode):
    type: Literal["file"]
    data: FileNodeData = Field(default_factory=FileNodeData)

class ButtonNode(BaseFlowNode):
    type: Literal["button"]
    data: ButtonNodeData = Field(default_factory=ButtonNodeData)

class QuickReplyNode(BaseFlowNode):
    type: Literal["quickReply"]
    data: QuickReplyNodeData = Field(default_factory=QuickReplyNodeData)

class CardNode(BaseFlowNode):
    type: Literal["card"]
    data: CardNodeData = Field(default_factory=CardNodeData)

class CarouselNode(BaseFlowNode):
    type: Literal["carousel"]
    data: CarouselNodeData = Field(default_factory=CarouselNodeData)

class CarouselItemNode(BaseFlowNode):
    type: Literal["carouselItem"]
    data: CarouselItemNodeData = Field(default_factory=CarouselItemNodeData)

class AINode(BaseFlowNode):
    type: Literal["ai"]
    data: AINodeData = Field(default_factory=AINodeData)

class ConditionNode(BaseFlowNode):
    type: Literal["condition"]
    data: ConditionNodeData = Field(default_factory=ConditionNodeData)

class InputNode(BaseFlowNode):
    type: Literal["input"]
    data: InputNodeData = Field(default_factory=InputNodeData)

class SequenceNode(BaseFlowNode):
    type: Literal["sequence"]
    data: SequenceNodeData = Field(default_factory=SequenceNodeData)

class ProductNode(BaseFlowNode):
    type: Literal["product"]
    data: ProductNodeData = Field(default_factory=ProductNodeData)

# Union of all node types with discriminator
FlowNode = Annotated[
    Union[
        StartNode,
        TextNode,
        ImageNode,
        VideoNode,
        AudioNode,
        FileNode,
        ButtonNode,
        QuickReplyNode,
        CardNode,
        CarouselNode,
        CarouselItemNode,
        AINode,
        ConditionNode,
        InputNode,
        SequenceNode,
        ProductNode
    ],
    Discriminator("type")
]

class FlowEdge(BaseModel):
    model_config = ConfigDict(extra='allow')

    id: str
    source: str
    target: str
    sourceHandle: Optional[str] = None
    label: Optional[str] = None

class FlowData(BaseModel):
    id: Optional[str] = None
    name: str = ""
    user_id: Optional[str] = None  # Flow owner
    page_id: Optional[str] = None  # Channel page the flow is attached to
    is_active: bool = True
    trigger_keyword: Optional[str] = None
    nodes: List[FlowNode] = []
    edges: List[FlowEdge] = []
    created_at: Optional[datetime] = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = Field(default_factory=datetime.utcnow)

"""
Channel-neutral message payloads produced by node handlers.
Each payload knows how to render the `message` object of a Graph API send.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal, Union

MAX_QUICK_REPLIES = 13
MAX_TEMPLATE_BUTTONS = 3
MAX_TEMPLATE_ELEMENTS = 10


class QuickReply(BaseModel):
    title: str
    payload: str
    content_type: str = "text"

    def to_graph(self) -> Dict[str, Any]:
        return {"content_type": self.content_type, "title": self.title, "payload": self.payload}


class TemplateButton(BaseModel):
    type: Literal["postback", "web_url", "phone_number"] = "postback"
    title: str
    payload: Optional[str] = None
    url: Optional[str] = None

    def to_graph(self) -> Dict[str, Any]:
        button: Dict[str, Any] = {"type": self.type, "title": self.title}
        if self.type == "web_url":
            button["url"] = self.url
        else:
            button["payload"] = self.payload
        return button


class TemplateElement(BaseModel):
    title: str
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    buttons: List[TemplateButton] = []

    def to_graph(self) -> Dict[str, Any]:
        element: Dict[str, Any] = {"title": self.title}
        if self.image_url:
            element["image_url"] = self.image_url
        if self.subtitle:
            element["subtitle"] = self.subtitle
        if self.buttons:
            element["buttons"] = [button.to_graph() for button in self.buttons]
        return element


class TextMessage(BaseModel):
    kind: Literal["text"] = "text"
    text: str
    quick_replies: List[QuickReply] = Field(default=[], max_length=MAX_QUICK_REPLIES)

    def to_graph(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"text": self.text}
        if self.quick_replies:
            message["quick_replies"] = [reply.to_graph() for reply in self.quick_replies]
        return message

    def log_text(self) -> str:
        return self.text


class ButtonTemplateMessage(BaseModel):
    kind: Literal["button_template"] = "button_template"
    text: str
    buttons: List[TemplateButton] = Field(..., min_length=1, max_length=MAX_TEMPLATE_BUTTONS)

    def to_graph(self) -> Dict[str, Any]:
        return {
            "attachment": {
                "type": "template",
                "payload": {
                    "template_type": "button",
                    "text": self.text,
                    "buttons": [button.to_graph() for button in self.buttons]
                }
            }
        }

    def log_text(self) -> str:
        return self.text


class GenericTemplateMessage(BaseModel):
    kind: Literal["generic_template"] = "generic_template"
    elements: List[TemplateElement] = Field(..., min_length=1, max_length=MAX_TEMPLATE_ELEMENTS)
    quick_replies: List[QuickReply] = Field(default=[], max_length=MAX_QUICK_REPLIES)
    summary: Optional[str] = None  # Text stored in the message log

    def to_graph(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "attachment": {
                "type": "template",
                "payload": {
                    "template_type": "generic",
                    "elements": [element.to_graph() for element in self.elements]
                }
            }
        }
        if self.quick_replies:
            message["quick_replies"] = [reply.to_graph() for reply in self.quick_replies]
        return message

    def log_text(self) -> str:
        return self.summary or ", ".join(element.title for element in self.elements)


class MediaAttachmentMessage(BaseModel):
    kind: Literal["media"] = "media"
    media_type: Literal["image", "video", "audio", "file"]
    url: str

    def to_graph(self) -> Dict[str, Any]:
        return {
            "attachment": {
                "type": self.media_type,
                "payload": {"url": self.url}
            }
        }

    def log_text(self) -> str:
        return ""


OutboundMessage = Union[TextMessage, ButtonTemplateMessage, GenericTemplateMessage, MediaAttachmentMessage]

"""
Product Details Service
Answers the "More Info" postback of product cards: gallery images,
then the price breakdown and description with a Buy Now link.
"""
from typing import Optional, Dict, List, Callable, Awaitable, TYPE_CHECKING
import asyncio

from utils.log_utils import LogUtil
from models.product_data import ProductData
from models.outbound_message import (
    OutboundMessage,
    TextMessage,
    ButtonTemplateMessage,
    MediaAttachmentMessage,
    TemplateButton,
)
from services.messaging_gateway import MessagingGateway
from services.execution_log_service import ExecutionLogService

if TYPE_CHECKING:
    from database.flow_db import FlowDB

MAX_GALLERY_IMAGES = 3
IMAGE_INTERVAL_SECONDS = 0.5
NO_DESCRIPTION_TEXT = "No description available"


def format_product_details(product: ProductData) -> str:
    """
    Price per attribute value and per variation, then the description.

    Size (L): $12.00
    Red: $10.50

    Product Details:
    Soft cotton tee
    """
    base_price = product.price or 0
    details = ""

    if product.attributes:
        groups: Dict[str, List] = {}
        for attribute in product.attributes:
            groups.setdefault(attribute.name, []).append(attribute)
        for name, values in groups.items():
            for attribute in values:
                details += f"{name} ({attribute.value}): ${base_price + attribute.price_modifier:.2f}\n"
        details += "\n"

    if product.variations:
        for variation in product.variations:
            details += f"{variation.name}: ${base_price + variation.price_modifier:.2f}\n"
        details += "\n"

    details += f"Product Details:\n{product.description or NO_DESCRIPTION_TEXT}"
    return details


class ProductDetailsService:
    def __init__(
        self,
        log_util: LogUtil,
        flow_db: "FlowDB",
        messaging_gateway: MessagingGateway,
        execution_log_service: ExecutionLogService,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.log_util = log_util
        self.flow_db = flow_db
        self.messaging_gateway = messaging_gateway
        self.execution_log_service = execution_log_service
        self.sleep = sleep

    async def send_product_details(
        self,
        access_token: str,
        recipient_id: str,
        product_id: str,
        external: bool = False,
        conversation_id: Optional[str] = None
    ) -> bool:
        """
        Send the details of one product to a subscriber.

        Args:
            external: the product sells on an external landing page, which the
                Buy Now button prefers over the store page

        Returns:
            False when the product does not exist and nothing was sent
        """
        products = await self.flow_db.get_products_by_ids([product_id])
        if not products:
            self.log_util.warning(
                service_name="ProductDetailsService",
                message=f"[PRODUCT_DETAILS] Product {product_id} not found"
            )
            return False
        product = products[0]

        for image_url in product.gallery(MAX_GALLERY_IMAGES):
            await self._send(access_token, recipient_id, conversation_id,
                             MediaAttachmentMessage(media_type="image", url=image_url))
            await self.sleep(IMAGE_INTERVAL_SECONDS)

        details = format_product_details(product)
        buy_url = (product.landing_page_url or product.store_url()) if external else product.store_url()
        if buy_url:
            message: OutboundMessage = ButtonTemplateMessage(
                text=details,
                buttons=[TemplateButton(type="web_url", title="Buy Now", url=buy_url)]
            )
        else:
            message = TextMessage(text=details)
        await self._send(access_token, recipient_id, conversation_id, message)

        self.log_util.info(
            service_name="ProductDetailsService",
            message=f"[PRODUCT_DETAILS] Sent details of product {product_id} to {recipient_id}"
        )
        return True

    async def _send(self, access_token: str, recipient_id: str, conversation_id: Optional[str],
                    message: OutboundMessage) -> None:
        message_id = await self.messaging_gateway.send(access_token, recipient_id, message)
        await self.execution_log_service.log_message(conversation_id, message, message_id)

"""
Messaging Gateway
Delivers composed outbound messages to a subscriber over the channel.
Handlers only see the MessagingGateway interface, the Graph API client is wired in main.py.
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
import httpx

from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils
from exceptions.flow_exception import MessagingGatewayException
from models.outbound_message import OutboundMessage


class MessagingGateway(ABC):
    """
    Capability interface for sending one message to one recipient
    """

    @abstractmethod
    async def send(self, access_token: str, recipient_id: str, message: OutboundMessage) -> Optional[str]:
        """
        Send a message and return the provider message id.

        Raises:
            MessagingGatewayException: the channel rejected or failed to deliver the payload
        """
        raise NotImplementedError


class GraphApiMessagingGateway(MessagingGateway):
    """
    Messenger Send API client (POST {GRAPH_API_URL}/me/messages)
    """

    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):
        self.log_util = log_util
        self.graph_api_url = str(environment_utils.get_env_variable("GRAPH_API_URL")).rstrip("/")
        self.timeout = float(environment_utils.get_env_variable("GATEWAY_TIMEOUT_SECONDS"))

    def build_request_body(self, recipient_id: str, message: OutboundMessage) -> Dict[str, Any]:
        return {
            "recipient": {"id": recipient_id},
            "message": message.to_graph()
        }

    async def send(self, access_token: str, recipient_id: str, message: OutboundMessage) -> Optional[str]:
        body = self.build_request_body(recipient_id, message)

        self.log_util.debug(
            service_name="GraphApiMessagingGateway",
            message=f"[SEND] {message.kind} to {recipient_id}: {body['message']}"
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.graph_api_url}/me/messages",
                    params={"access_token": access_token},
                    json=body,
                    headers={"Content-Type": "application/json"}
                )
        except httpx.TimeoutException as e:
            self.log_util.error(
                service_name="GraphApiMessagingGateway",
                message=f"[SEND] Timeout sending {message.kind} to {recipient_id}"
            )
            raise MessagingGatewayException(f"Timeout sending message to {recipient_id}", status_code=504) from e
        except httpx.RequestError as e:
            self.log_util.error(
                service_name="GraphApiMessagingGateway",
                message=f"[SEND] Request error sending {message.kind} to {recipient_id}: {str(e)}"
            )
            raise MessagingGatewayException(f"Error sending message: {str(e)}") from e

        try:
            result = response.json()
        except ValueError:
            result = {}

        if response.status_code != 200 or result.get("error"):
            error = result.get("error") or {}
            error_message = error.get("message") or f"Graph API returned {response.status_code}"
            self.log_util.error(
                service_name="GraphApiMessagingGateway",
                message=f"[SEND] Failed to send {message.kind} to {recipient_id}: {error_message}"
            )
            raise MessagingGatewayException(error_message)

        message_id = result.get("message_id")
        self.log_util.info(
            service_name="GraphApiMessagingGateway",
            message=f"[SEND] {message.kind} sent to {recipient_id}, message_id={message_id}"
        )
        return message_id

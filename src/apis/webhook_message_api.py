from fastapi import APIRouter
from typing import Dict, Any

# Utils
from utils.log_utils import LogUtil

# Services
from services.message_router_service import MessageRouterService, ACTION_NONE

# Models
from models.request.inbound_message_request import InboundMessageRequest
from models.response.message_route_response import MessageRouteResponse
from models.response.flow_run_response import FlowRunResponse


def create_webhook_message_api(
    log_util: LogUtil,
    message_router_service: MessageRouterService
) -> APIRouter:
    """
    Create API router for inbound channel events.
    The channel webhook normalizes each messaging event and posts it here.
    """
    router = APIRouter(
        prefix="/webhook",
        tags=["webhook"],
    )

    @router.post("/message", response_model=MessageRouteResponse)
    async def process_webhook_message(request: InboundMessageRequest) -> MessageRouteResponse:
        """
        Route an inbound message to automation.

        This endpoint:
        1. Starts a flow from the node named by a clicked option
        2. Resumes the subscriber's paused execution with their reply
        3. Starts a flow whose trigger keyword appears in the text
        """
        try:
            return await message_router_service.route_message(request)
        except Exception as e:
            log_util.error(
                service_name="WebhookMessageAPI",
                message=f"Error processing webhook message for user {request.sender}: {str(e)}"
            )

            # Return error response instead of raising exception
            # The channel webhook must always be acknowledged
            return MessageRouteResponse(
                action=ACTION_NONE,
                run=FlowRunResponse(success=False, message="Error processing webhook message", error=str(e))
            )

    @router.get("/health")
    async def webhook_health_check() -> Dict[str, Any]:
        """Health check endpoint for webhook API"""
        return {
            "status": "healthy",
            "api": "webhook_message_api",
            "service": "flow_engine_service"
        }

    return router

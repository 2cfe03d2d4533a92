"""
Execution Log Service
Appends node execution records and writes bot messages to the conversation history.
"""
from typing import Optional, TYPE_CHECKING

from utils.log_utils import LogUtil
from models.node_execution_data import NodeExecutionData
from models.message_log_data import MessageLogData
from models.outbound_message import OutboundMessage, MediaAttachmentMessage

if TYPE_CHECKING:
    from database.flow_db import FlowDB

NODE_STATUS_SUCCESS = "success"
NODE_STATUS_ERROR = "error"


class ExecutionLogService:
    def __init__(self, log_util: LogUtil, flow_db: "FlowDB"):
        self.log_util = log_util
        self.flow_db = flow_db

    async def record_success(self, execution_id: str, node_id: str, node_type: str, execution_time_ms: int) -> NodeExecutionData:
        record = NodeExecutionData(
            flow_execution_id=execution_id,
            node_id=node_id,
            node_type=node_type,
            status=NODE_STATUS_SUCCESS,
            execution_time_ms=execution_time_ms
        )
        saved = await self.flow_db.save_node_execution(record)
        self.log_util.info(
            service_name="ExecutionLogService",
            message=f"[NODE_LOG] {node_type} node {node_id} succeeded in {execution_time_ms}ms (execution {execution_id})"
        )
        return saved

    async def record_error(self, execution_id: str, node_id: str, node_type: str, execution_time_ms: int,
                           error_message: str) -> NodeExecutionData:
        record = NodeExecutionData(
            flow_execution_id=execution_id,
            node_id=node_id,
            node_type=node_type,
            status=NODE_STATUS_ERROR,
            execution_time_ms=execution_time_ms,
            error_message=error_message
        )
        saved = await self.flow_db.save_node_execution(record)
        self.log_util.error(
            service_name="ExecutionLogService",
            message=f"[NODE_LOG] {node_type} node {node_id} failed after {execution_time_ms}ms (execution {execution_id}): {error_message}"
        )
        return saved

    async def log_message(self, conversation_id: Optional[str], message: OutboundMessage,
                          message_id: Optional[str]) -> Optional[MessageLogData]:
        """
        Store a delivered bot message in the conversation history.
        Skipped when the trigger carried no conversation id.
        """
        if not conversation_id:
            return None

        message_log = MessageLogData(
            conversation_id=conversation_id,
            message_text=message.log_text(),
            message_id=message_id
        )
        if isinstance(message, MediaAttachmentMessage):
            message_log.attachment_url = message.url
            message_log.attachment_type = message.media_type

        saved = await self.flow_db.save_message_log(message_log)
        if saved is None:
            self.log_util.warning(
                service_name="ExecutionLogService",
                message=f"[MESSAGE_LOG] Message {message_id} not stored for conversation {conversation_id}"
            )
        return saved

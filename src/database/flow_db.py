from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
from bson.errors import InvalidId
import urllib.parse
import threading
import asyncio
from typing import Optional, List, Dict, Any
from datetime import datetime
import weakref
from pymongo import ReturnDocument, ASCENDING, DESCENDING
from pymongo.errors import NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Exceptions
from exceptions.flow_exception import FlowDBException

# Models
from models.flow_data import FlowData
from models.execution_data import FlowExecutionData, ExecutionContinuation, ExecutionStatus
from models.node_execution_data import NodeExecutionData
from models.flow_user_input import FlowUserInput
from models.message_log_data import MessageLogData
from models.page_data import PageData
from models.product_data import ProductData
from models.ai_config import AIProviderConfig

"""
Database class for flow execution operations
"""
class FlowDB:
    def __init__(self, log_util: LogUtil, environment_utils: EnvironmentUtils):

        # Initialize logger
        self.log_util = log_util

        # Initialize environment utils
        self.environment_utils = environment_utils

        # Mongo credentials
        self.username = urllib.parse.quote_plus(self.environment_utils.get_env_variable("MONGO_USERNAME"))
        self.password = urllib.parse.quote_plus(self.environment_utils.get_env_variable("MONGO_PASSWORD"))
        self.auth_source = self.environment_utils.get_env_variable("MONGO_AUTH_SOURCE")
        self.host = self.environment_utils.get_env_variable("MONGO_HOST")
        self.port = int(self.environment_utils.get_env_variable("MONGO_PORT"))
        self.db_name = self.environment_utils.get_env_variable("MONGO_DB_NAME")

        # Mongo Connection Pool Configs
        self.max_pool_size = 50
        self.min_pool_size = 0  # Create connections on-demand instead of at startup
        self.max_idle_time_ms = 30000
        self.wait_queue_timeout_ms = 10000
        self.connect_timeout_ms = 10000
        self.server_selection_timeout_ms = 10000
        self.socket_timeout_ms = 10000

        # One client per event loop, keyed by loop id
        self._clients = {}  # {loop_id: {client, db, collections, loop}}

        # Thread-safe initialization lock
        self._client_lock = threading.Lock()

    def _get_client_for_current_loop(self) -> Dict[str, Any]:
        """
        Thread-safe method to get the MongoDB client and collections for the current event loop.
        Returns a dictionary with 'client', 'db', and 'collections' for the current event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError("No event loop available. Database methods must be called from an async context.")

        loop_id = id(loop)

        if loop_id in self._clients:
            return self._clients[loop_id]

        with self._client_lock:
            # Double-check after acquiring lock
            if loop_id in self._clients:
                return self._clients[loop_id]

            client = AsyncIOMotorClient(
                f"mongodb://{self.username}:{self.password}@{self.host}:{self.port}/?authSource={self.auth_source}",
                maxPoolSize=self.max_pool_size,
                minPoolSize=self.min_pool_size,
                maxIdleTimeMS=self.max_idle_time_ms,
                waitQueueTimeoutMS=self.wait_queue_timeout_ms,
                connectTimeoutMS=self.connect_timeout_ms,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                socketTimeoutMS=self.socket_timeout_ms,
                retryWrites=True,
                retryReads=True
            )
            db = client[self.db_name]

            client_data = {
                'client': client,
                'db': db,
                'collections': self._initialize_collections_for_client(db),
                'loop': weakref.ref(loop)
            }
            self._clients[loop_id] = client_data

            self.log_util.info(
                service_name="FlowDB",
                message=f"MongoDB client initialized for event loop {loop_id} (lazy initialization)"
            )

            return client_data

    def _initialize_collections_for_client(self, db) -> Dict[str, Any]:
        """
        Initialize MongoDB collections for a given database instance
        """
        return {
            'flows': db.flows,
            'pages': db.pages,
            'profiles': db.profiles,
            'products': db.products,
            'flow_executions': db.flow_executions,
            'node_executions': db.node_executions,
            'flow_user_inputs': db.flow_user_inputs,
            'messages': db.messages
        }

    def close(self):
        """
        Close all MongoDB clients and cleanup resources
        """
        with self._client_lock:
            for loop_id, client_data in self._clients.items():
                try:
                    client_data['client'].close()
                except Exception as e:
                    self.log_util.warning(
                        service_name="FlowDB",
                        message=f"Error closing client for loop {loop_id}: {str(e)}"
                    )

            self._clients.clear()

            self.log_util.info(
                service_name="FlowDB",
                message="All MongoDB clients closed"
            )

    def _handle_db_operation(self, operation_name: str, error: Exception) -> None:
        """
        Handle database operation errors with appropriate logging and exception wrapping.

        Args:
            operation_name: Name of the operation that failed
            error: The exception that occurred
        """
        if isinstance(error, (NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure)):
            self.log_util.error(
                service_name="FlowDB",
                message=f"Database connection error in {operation_name}: {str(error)}"
            )
            raise FlowDBException(
                message=f"Database connection error: {str(error)}",
                status_code=503  # Service Unavailable
            ) from error
        else:
            self.log_util.error(
                service_name="FlowDB",
                message=f"Error in {operation_name}: {str(error)}"
            )
            raise FlowDBException(
                message=f"Database error: {str(error)}",
                status_code=500
            ) from error

    @staticmethod
    def _to_object_id(document_id: str) -> Optional[ObjectId]:
        try:
            return ObjectId(document_id)
        except (InvalidId, TypeError):
            return None

    @staticmethod
    def _with_string_id(document: Dict[str, Any]) -> Dict[str, Any]:
        document = dict(document)
        if "_id" in document:
            document["id"] = str(document.pop("_id"))
        return document

    # Flow read operations (flows are authored elsewhere)
    async def get_flow(self, flow_id: str) -> Optional[FlowData]:
        """
        Get a flow by ID
        """
        object_id = self._to_object_id(flow_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flows'].find_one({"_id": object_id})
        except Exception as e:
            self._handle_db_operation("get_flow", e)
        if result is None:
            return None
        return FlowData.model_validate(self._with_string_id(result))

    async def get_active_flows_by_page(self, page_id: str) -> List[FlowData]:
        """
        Get all active flows attached to a channel page
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flows'].find({"page_id": page_id, "is_active": True})
            documents = await cursor.to_list(length=None)
        except Exception as e:
            self._handle_db_operation("get_active_flows_by_page", e)
        return [FlowData.model_validate(self._with_string_id(document)) for document in documents]

    async def get_page(self, page_id: str) -> Optional[PageData]:
        """
        Get a channel page by its provider page id
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['pages'].find_one({"page_id": page_id})
            if result is None:
                return None
            return PageData.model_validate(self._with_string_id(result))
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error getting page: {str(e)}")
            return None

    async def get_ai_config(self, user_id: str) -> Optional[AIProviderConfig]:
        """
        Get the AI provider preferences stored on the flow owner's profile
        """
        client_data = self._get_client_for_current_loop()
        try:
            profile = await client_data['collections']['profiles'].find_one({"user_id": user_id})
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error getting AI config: {str(e)}")
            return None
        if profile is None or not profile.get("preferred_ai_provider"):
            return None

        provider = profile.get("preferred_ai_provider")
        api_key = None
        if provider == "openai":
            api_key = profile.get("openai_api_key")
        elif provider == "gemini":
            api_key = profile.get("gemini_api_key")
        return AIProviderConfig(
            provider=provider,
            model=profile.get("preferred_ai_model"),
            api_key=api_key
        )

    async def get_products_by_ids(self, product_ids: List[str]) -> List[ProductData]:
        """
        Get products with their store info, keeping the requested order
        """
        object_ids = [oid for oid in (self._to_object_id(pid) for pid in product_ids) if oid is not None]
        if not object_ids:
            return []
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['products'].find({"_id": {"$in": object_ids}})
            documents = await cursor.to_list(length=None)
        except Exception as e:
            self._handle_db_operation("get_products_by_ids", e)
        products = {str(document["_id"]): ProductData.model_validate(self._with_string_id(document)) for document in documents}
        return [products[pid] for pid in product_ids if pid in products]

    # Flow execution operations
    async def create_execution(self, execution: FlowExecutionData) -> FlowExecutionData:
        """
        Create a new flow execution record
        """
        client_data = self._get_client_for_current_loop()
        try:
            execution_dict = execution.model_dump(exclude={"id"}, mode="python")
            result = await client_data['collections']['flow_executions'].insert_one(execution_dict)
        except Exception as e:
            self._handle_db_operation("create_execution", e)
        return execution.model_copy(update={"id": str(result.inserted_id)})

    async def get_execution(self, execution_id: str) -> Optional[FlowExecutionData]:
        """
        Get a flow execution by ID
        """
        object_id = self._to_object_id(execution_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].find_one({"_id": object_id})
        except Exception as e:
            self._handle_db_operation("get_execution", e)
        if result is None:
            return None
        return FlowExecutionData.model_validate(self._with_string_id(result))

    async def get_latest_waiting_execution(self, page_id: str, subscriber_id: str) -> Optional[FlowExecutionData]:
        """
        Get the most recently triggered execution waiting for this subscriber's reply
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].find_one(
                {
                    "page_id": page_id,
                    "subscriber_id": subscriber_id,
                    "status": ExecutionStatus.WAITING_FOR_INPUT.value
                },
                sort=[("triggered_at", DESCENDING)]
            )
        except Exception as e:
            self._handle_db_operation("get_latest_waiting_execution", e)
        if result is None:
            return None
        return FlowExecutionData.model_validate(self._with_string_id(result))

    async def pause_execution(self, execution_id: str, continuation: ExecutionContinuation) -> bool:
        """
        Move a running execution to waiting_for_input and store its continuation
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].update_one(
                {"_id": ObjectId(execution_id), "status": ExecutionStatus.RUNNING.value},
                {
                    "$set": {
                        "status": ExecutionStatus.WAITING_FOR_INPUT.value,
                        "continuation": continuation.model_dump(),
                        "updated_at": datetime.utcnow()
                    }
                }
            )
        except Exception as e:
            self._handle_db_operation("pause_execution", e)
        return result.modified_count == 1

    async def claim_waiting_execution(self, execution_id: str) -> Optional[FlowExecutionData]:
        """
        Atomically move a waiting execution back to running and clear its continuation.
        Returns the execution as it was before the update (continuation included),
        or None when there was no waiting execution to claim.
        """
        object_id = self._to_object_id(execution_id)
        if object_id is None:
            return None
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].find_one_and_update(
                {"_id": object_id, "status": ExecutionStatus.WAITING_FOR_INPUT.value},
                {
                    "$set": {
                        "status": ExecutionStatus.RUNNING.value,
                        "continuation": None,
                        "updated_at": datetime.utcnow()
                    }
                },
                return_document=ReturnDocument.BEFORE
            )
        except Exception as e:
            self._handle_db_operation("claim_waiting_execution", e)
        if result is None:
            return None
        return FlowExecutionData.model_validate(self._with_string_id(result))

    async def finish_execution(self, execution_id: str, status: ExecutionStatus, error_message: Optional[str] = None) -> bool:
        """
        Move an execution to a terminal status (completed or failed)
        """
        now = datetime.utcnow()
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_executions'].update_one(
                {
                    "_id": ObjectId(execution_id),
                    "status": {"$nin": [ExecutionStatus.COMPLETED.value, ExecutionStatus.FAILED.value]}
                },
                {
                    "$set": {
                        "status": status.value,
                        "error_message": error_message,
                        "continuation": None,
                        "completed_at": now,
                        "updated_at": now
                    }
                }
            )
        except Exception as e:
            self._handle_db_operation("finish_execution", e)
        return result.modified_count == 1

    # Node execution log operations
    async def save_node_execution(self, record: NodeExecutionData) -> NodeExecutionData:
        """
        Append a node execution record
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['node_executions'].insert_one(record.model_dump(exclude={"id"}))
        except Exception as e:
            self._handle_db_operation("save_node_execution", e)
        return record.model_copy(update={"id": str(result.inserted_id)})

    async def get_node_executions(self, execution_id: str) -> List[NodeExecutionData]:
        """
        Get node execution records for an execution in insertion order
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['node_executions'].find(
                {"flow_execution_id": execution_id}
            ).sort("created_at", ASCENDING)
            documents = await cursor.to_list(length=None)
        except Exception as e:
            self._handle_db_operation("get_node_executions", e)
        return [NodeExecutionData.model_validate(self._with_string_id(document)) for document in documents]

    # Collected variable operations
    async def save_flow_user_input(self, execution_id: str, variable_name: str, user_response: str,
                                   input_node_id: Optional[str] = None) -> FlowUserInput:
        """
        Save or overwrite a collected variable, one record per (execution, variable)
        """
        now = datetime.utcnow()
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['flow_user_inputs'].find_one_and_update(
                {
                    "flow_execution_id": execution_id,
                    "variable_name": variable_name
                },
                {
                    "$set": {
                        "user_response": user_response,
                        "input_node_id": input_node_id,
                        "updated_at": now
                    },
                    "$setOnInsert": {
                        "flow_execution_id": execution_id,
                        "variable_name": variable_name,
                        "created_at": now
                    }
                },
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except Exception as e:
            self._handle_db_operation("save_flow_user_input", e)
        return FlowUserInput.model_validate(self._with_string_id(result))

    async def get_flow_user_inputs(self, execution_id: str) -> List[FlowUserInput]:
        """
        Get all collected variables for an execution, oldest first
        """
        client_data = self._get_client_for_current_loop()
        try:
            cursor = client_data['collections']['flow_user_inputs'].find(
                {"flow_execution_id": execution_id}
            ).sort("updated_at", ASCENDING)
            documents = await cursor.to_list(length=None)
        except Exception as e:
            self._handle_db_operation("get_flow_user_inputs", e)
        return [FlowUserInput.model_validate(self._with_string_id(document)) for document in documents]

    # Message log operations
    async def save_message_log(self, message_log: MessageLogData) -> Optional[MessageLogData]:
        """
        Save a bot message to the conversation history
        """
        client_data = self._get_client_for_current_loop()
        try:
            result = await client_data['collections']['messages'].insert_one(message_log.model_dump(exclude={"id"}))
            return message_log.model_copy(update={"id": str(result.inserted_id)})
        except Exception as e:
            self.log_util.error(service_name="FlowDB", message=f"Error saving message log: {str(e)}")
            return None

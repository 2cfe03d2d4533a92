from pydantic import BaseModel
from typing import List, Dict, Optional

from models.execution_data import FlowExecutionData
from models.node_execution_data import NodeExecutionData


class ExecutionDetailResponse(BaseModel):
    execution: FlowExecutionData
    node_executions: List[NodeExecutionData] = []
    variables: Dict[str, str] = {}

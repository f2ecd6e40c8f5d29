from typing import List, Optional, Any, Dict

from pydantic import BaseModel


class AskRequest(BaseModel):
    question: str
    debug: bool = False
    conversation_id: Optional[str] = None
    context: Optional[str] = "default"

    class Config:
        extra = "ignore"


class StepModel(BaseModel):
    query: str
    bindings: List[Any] = []
    results: List[Dict[str, Any]] = []


class QueryLogModel(BaseModel):
    query: str
    bindings: List[Any] = []
    time: float


class DebugModel(BaseModel):
    queries: List[QueryLogModel] = []


class AskResponse(BaseModel):
    summary: str
    steps: Optional[List[StepModel]] = None
    results: Optional[List[List[Dict[str, Any]]]] = None
    debug: Optional[DebugModel] = None


class ClearConversationResponse(BaseModel):
    cleared: int

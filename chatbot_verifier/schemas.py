# chatbot_verifier/schemas.py
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- request bodies
# Fields are loosely typed on purpose: a missing or non-string prompt is a 400
# from the coordinator, not a 422 from body validation.
class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt: Any = None


class VerifyRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    request_id: Any = None
    signature: Any = None


# --- responses
class Usage(CamelModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ChatResponse(CamelModel):
    request_id: int
    text: str
    proof: str
    model: str
    usage: Usage
    timestamp: str
    verifiable: bool


class LedgerRequestView(CamelModel):
    prompt_hash: str
    requester: str
    timestamp: int
    answered: bool


class LedgerAnswerView(CamelModel):
    text: str
    proof: str
    submitter: str
    timestamp: int
    verified: bool


class RequestDetailResponse(CamelModel):
    request_id: int
    request: LedgerRequestView
    answer: LedgerAnswerView


class VerifyResponse(CamelModel):
    request_id: int
    verified: bool
    timestamp: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    ledger: str


class Proposal(CamelModel):
    id: int
    title: str
    description: str
    status: str
    votes_for: int
    votes_against: int
    end_time: str
    proposer: str


class ProposalsResponse(BaseModel):
    proposals: List[Proposal]
    total: int
    active: int


class ErrorResponse(BaseModel):
    error: str
    error_code: str
    message: Optional[str] = None

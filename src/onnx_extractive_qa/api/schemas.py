"""
Pydantic models for the question answering API
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class TokenizeRequest(BaseModel):
    """Request payload for the tokenize endpoint"""
    question: Optional[str] = Field(default=None, description="Question text")
    context: Optional[str] = Field(default=None, description="Context passage")


class TokenizeResponse(BaseModel):
    """Tokenized (question, context) pair"""
    input_ids: List[int] = Field(..., description="Token IDs of the encoded pair")
    attention_mask: List[int] = Field(..., description="Attention mask (1 for real tokens, 0 for padding)")


class AnswerRequest(BaseModel):
    """Request payload for the answer endpoint"""
    question: Optional[str] = Field(default=None, description="Question text")
    context: Optional[str] = Field(default=None, description="Context passage")
    max_length: Optional[int] = Field(default=None, gt=0, description="Maximum encoded length")


class AnswerResponse(BaseModel):
    """Extracted answer"""
    answer: str = Field(..., description="Answer text, or the no-answer sentinel")
    score: float = Field(..., description="Mean of the raw start and end logits of the span")


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    model_loaded: bool = Field(..., description="Whether the ONNX session is loaded")
    providers: List[str] = Field(default_factory=list, description="Configured execution providers")

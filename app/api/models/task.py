# app/api/models/task.py
from pydantic import BaseModel, Field
from typing import Optional


class TaskRequest(BaseModel):
    """Request model for submitting a paid task."""
    taskId: str = Field(..., min_length=1, description="Client-chosen task identifier")
    prompt: Optional[str] = Field(default=None, description="Task input handed to the executor")


class PaymentSummary(BaseModel):
    """The accepted payment, echoed back to the caller."""
    payer: str = Field(..., description="Address that signed the payment")
    amount: str = Field(..., description="Amount paid in the token's smallest unit")
    network: str = Field(..., description="Network identifier (CAIP-2)")
    nonce: str = Field(..., description="Nonce consumed by this payment")


class TaskResponse(BaseModel):
    """Response model for an accepted task."""
    success: bool = Field(default=True)
    taskId: str = Field(..., description="Task identifier from the request")
    status: str = Field(default="accepted", description="Task status")
    payment: Optional[PaymentSummary] = Field(default=None, description="Payment that admitted the request")


class AgentCard(BaseModel):
    """Public description of this service, served without payment."""
    name: str
    description: str
    version: str
    payment: dict = Field(..., description="Payment terms: network, token, price and recipient")

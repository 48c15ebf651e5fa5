# app/api/endpoints/tasks.py
from fastapi import APIRouter, Request
import logging

from app.api.models.task import TaskRequest, TaskResponse, PaymentSummary
from app.x402.middleware import get_payment_context

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/task", response_model=TaskResponse)
async def submit_task(task: TaskRequest, request: Request) -> TaskResponse:
    """
    Accept a paid task.

    The x402 middleware has already validated the payment by the time this
    runs; execution itself is handed off to the external task executor.

    Returns:
        TaskResponse: The task id and the payment that admitted it
    """
    payment = get_payment_context(request)
    summary = None
    if payment is not None:
        summary = PaymentSummary(
            payer=payment.payer,
            amount=payment.amount,
            network=payment.network,
            nonce=payment.nonce,
        )
        logger.info(f"Task {task.taskId} accepted, paid by {payment.payer}")
    else:
        logger.info(f"Task {task.taskId} accepted without payment (x402 disabled)")

    return TaskResponse(taskId=task.taskId, payment=summary)

"""
Document signing endpoints
"""

import logging
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status

from app.dependencies import get_signing_workflow
from app.schemas.signing import (
    SendForSigningRequest, SendForSigningResponse,
    SignDocumentRequest, SignDocumentResponse,
    DeclineRequest, DeclineResponse,
    CancelSigningRequest, CancelSigningResponse,
    RemindSignersRequest, RemindSignersResponse,
    DocumentSignatureStatusResponse, TokenVerificationResponse, AuditTrailResponse
)
from app.services.signature_recorder import SignerContext
from app.services.signature_service import SignatureService
from app.services.signing_workflow_service import SigningWorkflowService
from app.utils.security import get_current_user_id

router = APIRouter()
logger = logging.getLogger(__name__)


def signer_context(request: Request, device_info: str = None, location: str = None) -> SignerContext:
    """Capture IP, user agent and device details for the audit record"""
    user_agent = request.headers.get("user-agent")
    return SignerContext(
        ip_address=SignatureService.get_client_ip(request),
        user_agent=user_agent,
        device_info=device_info or SignatureService.get_device_info(user_agent),
        geolocation=location or None,
    )


@router.post("/{document_id}/send-for-signing", response_model=SendForSigningResponse,
             status_code=status.HTTP_201_CREATED)
async def send_for_signing(
    document_id: str,
    payload: SendForSigningRequest,
    background_tasks: BackgroundTasks,
    current_user_id: str = Depends(get_current_user_id),
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    """Open a signing cycle and notify the first signer(s)"""

    result = workflow.send_for_signing(
        document_id,
        payload.signer_ids,
        payload.signing_mode,
        payload.token_expiration_days,
        due_date=payload.due_date,
        message=payload.message,
        operator_id=current_user_id,
    )
    background_tasks.add_task(workflow.dispatch_notifications, result.notices)

    return SendForSigningResponse(
        document_id=document_id,
        cycle_id=result.cycle.id,
        status=result.cycle.status,
        signing_mode=result.cycle.signing_mode,
        total_signers=result.cycle.total_signers,
        message=f"Document sent to {result.cycle.total_signers} signer(s)",
        signing_tokens=result.signing_tokens,
    )


@router.post("/{document_id}/sign", response_model=SignDocumentResponse)
async def sign_document(
    document_id: str,
    payload: SignDocumentRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    """Sign with a signing token; no operator login required"""

    outcome = workflow.sign(
        payload.signing_token,
        payload.signature_data,
        context=signer_context(request, payload.device_info, payload.location),
        document_id=document_id,
    )
    background_tasks.add_task(workflow.dispatch_notifications, outcome.notices)

    result = outcome.result
    return SignDocumentResponse(
        document_id=document_id,
        signature_id=result.assignment.id,
        signer_id=result.assignment.signer_id,
        signed_at=result.assignment.signed_at,
        status=result.document_status,
        is_complete=result.is_complete,
        next_signer_id=result.next_signer_id,
        message=outcome.message,
    )


@router.get("/{document_id}/signature-status", response_model=DocumentSignatureStatusResponse)
async def get_signature_status(
    document_id: str,
    current_user_id: str = Depends(get_current_user_id),
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    return workflow.get_status(document_id)


@router.get("/{document_id}/verify-token", response_model=TokenVerificationResponse)
async def verify_signing_token(
    document_id: str,
    token: str = Query(..., min_length=1),
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    """Check a signing link before the signing page is shown"""
    return workflow.verify_token(document_id, token)


@router.post("/{document_id}/decline", response_model=DeclineResponse)
async def decline_signing(
    document_id: str,
    payload: DeclineRequest,
    request: Request,
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    outcome = workflow.decline(
        payload.signing_token,
        reason=payload.reason,
        context=signer_context(request),
        document_id=document_id,
    )
    return DeclineResponse(
        document_id=document_id,
        signer_id=outcome.assignment.signer_id,
        status=outcome.document_status,
        message="You declined to sign. The document owner has been informed.",
    )


@router.post("/{document_id}/cancel-signing", response_model=CancelSigningResponse)
async def cancel_signing(
    document_id: str,
    payload: CancelSigningRequest = None,
    current_user_id: str = Depends(get_current_user_id),
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    cycle = workflow.cancel_for_document(
        document_id,
        reason=payload.reason if payload else None,
        operator_id=current_user_id,
    )
    return CancelSigningResponse(
        document_id=document_id,
        cycle_id=cycle.id,
        status=cycle.status,
        message="Signing request cancelled. Outstanding signing links no longer work.",
    )


@router.post("/{document_id}/remind-signers", response_model=RemindSignersResponse)
async def remind_signers(
    document_id: str,
    background_tasks: BackgroundTasks,
    payload: RemindSignersRequest = None,
    current_user_id: str = Depends(get_current_user_id),
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    notices = workflow.remind(
        document_id,
        signer_ids=payload.signer_ids if payload else None,
        operator_id=current_user_id,
    )
    background_tasks.add_task(workflow.dispatch_notifications, notices)

    return RemindSignersResponse(
        document_id=document_id,
        reminders_sent=len(notices),
        signer_ids=[n.signer_id for n in notices],
    )


@router.get("/{document_id}/audit-trail", response_model=AuditTrailResponse)
async def get_audit_trail(
    document_id: str,
    current_user_id: str = Depends(get_current_user_id),
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    return workflow.get_audit_trail(document_id)

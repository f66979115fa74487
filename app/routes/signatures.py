"""
Signer inbox endpoints
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from app.dependencies import get_signing_workflow
from app.schemas.signing import PendingSignatureResponse
from app.services.signing_errors import SignerMismatch
from app.services.signing_workflow_service import SigningWorkflowService
from app.utils.security import get_current_user_id

router = APIRouter()


@router.get("/pending", response_model=List[PendingSignatureResponse])
async def list_pending_signatures(
    signer_id: Optional[str] = Query(None, alias="signerId", min_length=1),
    current_user_id: str = Depends(get_current_user_id),
    workflow: SigningWorkflowService = Depends(get_signing_workflow)
):
    """Documents waiting for the caller's signature right now"""
    # The inbox carries live signing tokens, so it is only ever the caller's own
    if signer_id is not None and signer_id != current_user_id:
        raise SignerMismatch(signer_id=signer_id)

    return workflow.list_pending_for_signer(current_user_id)

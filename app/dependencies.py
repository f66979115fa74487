"""
FastAPI dependencies wiring the signing workflow to its collaborators
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from database import get_db
from app.services.collaborators import DocumentStore, GroupDirectory, HttpGroupDirectory, SqlDocumentStore
from app.services.notification_service import Notifier, build_notifier
from app.services.signing_workflow_service import SigningWorkflowService


def get_document_store(db: Session = Depends(get_db)) -> DocumentStore:
    return SqlDocumentStore(db)


def get_group_directory() -> GroupDirectory:
    return HttpGroupDirectory()


def get_notifier() -> Notifier:
    return build_notifier()


def get_signing_workflow(
    db: Session = Depends(get_db),
    document_store: DocumentStore = Depends(get_document_store),
    group_directory: GroupDirectory = Depends(get_group_directory),
    notifier: Notifier = Depends(get_notifier)
) -> SigningWorkflowService:
    return SigningWorkflowService(
        db,
        document_store=document_store,
        group_directory=group_directory,
        notifier=notifier,
    )

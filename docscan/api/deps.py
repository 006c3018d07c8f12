from fastapi import Depends, Header, HTTPException, Request, status

from docscan.schemas.document import Document
from docscan.worker.startup import Services


def get_services(request: Request) -> Services:
    """Services attached to the application at startup."""
    return request.app.state.services


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """
    Identity of the caller, set by the upstream gateway.

    Raises:
        HTTPException: 401 if the header is missing.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id


def get_owned_document(
    document_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> Document:
    """
    Load a document the caller owns.

    Raises:
        HTTPException: 404 if it doesn't exist, 403 if owned by someone else.
    """
    document = services.documents.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    if document.owner_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return document

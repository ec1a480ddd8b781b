"""/v1/whitelist - Manage payees exempted from classification"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from anchor_gateway.api.v1.schemas import WhitelistCreateRequest, WhitelistEntrySchema, WhitelistResponse
from anchor_gateway.api.dependencies import get_request_id
from anchor_gateway.infrastructure.database.session import get_db
from anchor_gateway.infrastructure.database.repositories import WhitelistRepository

router = APIRouter()


@router.get("/whitelist", response_model=WhitelistResponse)
def list_whitelist(db: Session = Depends(get_db)):
    """Return every whitelisted payee pattern"""
    entries = WhitelistRepository(db).list_entries()
    return WhitelistResponse(entries=[WhitelistEntrySchema.model_validate(e) for e in entries])


@router.post("/whitelist", response_model=WhitelistEntrySchema, status_code=201)
def add_whitelist_entry(
    request_body: WhitelistCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Whitelist a payee. Any transaction whose payee contains the pattern
    (case-insensitive) is stored without classification or alert.
    """
    repo = WhitelistRepository(db)
    if repo.get_by_name(request_body.payee_name) is not None:
        raise HTTPException(status_code=409, detail="Payee already whitelisted")

    try:
        entry = repo.add_entry(request_body.payee_name, request_body.category, request_body.notes)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Payee already whitelisted")

    logging.info(
        "Whitelist entry added",
        extra={"request_id": get_request_id(request), "payee_name": entry.payee_name},
    )
    return WhitelistEntrySchema.model_validate(entry)


@router.delete("/whitelist/{payee_name}", status_code=204)
def remove_whitelist_entry(payee_name: str, request: Request, db: Session = Depends(get_db)):
    """Remove a payee pattern by exact name"""
    if not WhitelistRepository(db).remove_entry(payee_name):
        raise HTTPException(status_code=404, detail="Payee not whitelisted")
    db.commit()

    logging.info(
        "Whitelist entry removed",
        extra={"request_id": get_request_id(request), "payee_name": payee_name},
    )

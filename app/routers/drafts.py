from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from pydantic import ValidationError
from typing import List, Optional
from structlog import get_logger

from app.dependencies.auth import get_current_user
from app.dependencies.services import get_listing_api, get_object_store
from app.schemas.listing import (
    DraftStateResponse,
    FieldChange,
    FormResponse,
    ListingForm,
    MAX_IMAGES,
    SubmitResponse,
)
from app.schemas.session import UserSession
from app.services.drafts import DraftNotFound, registry
from app.services.editor import (
    DraftClosedError,
    ImageFile,
    InvalidControlValueError,
    Outcome,
    UnknownControlError,
    form_controls,
)

logger = get_logger()
router = APIRouter(prefix="/api/v1/drafts", tags=["drafts"])

BUSY_MESSAGE = "An upload or submission is already in progress"

_failure_status = {
    Outcome.BUSY: 409,
    Outcome.LIMIT_EXCEEDED: 400,
    Outcome.UPLOAD_FAILED: 502,
    Outcome.INVALID: 422,
    Outcome.SUBMIT_FAILED: 502,
}

def _state(draft_id: str, editor) -> DraftStateResponse:
    return DraftStateResponse(draft_id=draft_id, **editor.state())

def _fail(draft_id: str, editor, outcome: Outcome, message: str):
    # Failures carry the draft so the client can retry without re-entering anything
    raise HTTPException(
        status_code=_failure_status[outcome],
        detail={
            "message": message,
            "outcome": outcome.value,
            "draft": _state(draft_id, editor).model_dump(by_alias=True, mode="json"),
        },
    )

def _open_editor(draft_id: str, user: UserSession):
    try:
        return registry.get(draft_id, user)
    except DraftNotFound:
        raise HTTPException(status_code=404, detail="Draft not found")

@router.get("/form", response_model=FormResponse)
async def get_form():
    """Controls of the listing form with their kinds and bounds."""
    return {"controls": form_controls(), "max_images": MAX_IMAGES, "accept": "image/*"}

@router.post("", response_model=DraftStateResponse, status_code=201)
async def open_draft(
    user: UserSession = Depends(get_current_user),
    store=Depends(get_object_store),
    api=Depends(get_listing_api),
):
    draft_id, editor = registry.open(user, store, api)
    return _state(draft_id, editor)

@router.get("/{draft_id}", response_model=DraftStateResponse)
async def get_draft(draft_id: str, user: UserSession = Depends(get_current_user)):
    editor = _open_editor(draft_id, user)
    return _state(draft_id, editor)

@router.patch("/{draft_id}/fields", response_model=DraftStateResponse)
async def change_field(draft_id: str, change: FieldChange, user: UserSession = Depends(get_current_user)):
    editor = _open_editor(draft_id, user)
    try:
        editor.handle_change(change.id, value=change.value, checked=change.checked)
    except (UnknownControlError, InvalidControlValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except DraftClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Updated draft field", draft_id=draft_id, control=change.id, user_id=user.id)
    return _state(draft_id, editor)

@router.post("/{draft_id}/images", response_model=DraftStateResponse)
async def upload_images(
    draft_id: str,
    files: Optional[List[UploadFile]] = File(None),
    user: UserSession = Depends(get_current_user),
):
    editor = _open_editor(draft_id, user)
    batch = []
    for f in files or []:
        if not (f.content_type or "").startswith("image/"):
            raise HTTPException(status_code=415, detail=f"{f.filename} is not an image")
        batch.append(ImageFile(filename=f.filename or "", data=await f.read(), content_type=f.content_type))
    try:
        outcome = await editor.upload_images(batch)
    except DraftClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if outcome == Outcome.BUSY:
        _fail(draft_id, editor, outcome, BUSY_MESSAGE)
    if outcome in (Outcome.LIMIT_EXCEEDED, Outcome.UPLOAD_FAILED):
        _fail(draft_id, editor, outcome, editor.image_upload_error)
    logger.info("Processed image batch", draft_id=draft_id, outcome=outcome.value, user_id=user.id)
    return _state(draft_id, editor)

@router.delete("/{draft_id}/images/{index}", response_model=DraftStateResponse)
async def remove_image(draft_id: str, index: int, user: UserSession = Depends(get_current_user)):
    editor = _open_editor(draft_id, user)
    try:
        editor.remove_image(index)
    except IndexError:
        raise HTTPException(status_code=404, detail="Image not found")
    except DraftClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Removed draft image", draft_id=draft_id, index=index, user_id=user.id)
    return _state(draft_id, editor)

@router.post("/{draft_id}/submit", response_model=SubmitResponse, status_code=201)
async def submit_draft(draft_id: str, user: UserSession = Depends(get_current_user)):
    editor = _open_editor(draft_id, user)
    try:
        ListingForm.model_validate(editor.draft.model_dump(by_alias=True))
    except ValidationError as e:
        errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
        raise HTTPException(status_code=422, detail={"message": "Please fill in the form correctly", "errors": errors})
    try:
        outcome = await editor.submit()
    except DraftClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if outcome == Outcome.BUSY:
        _fail(draft_id, editor, outcome, BUSY_MESSAGE)
    if outcome != Outcome.OK:
        _fail(draft_id, editor, outcome, editor.error)
    registry.discard(draft_id)
    logger.info("Submitted draft", draft_id=draft_id, listing_id=editor.listing_id, user_id=user.id)
    return {"listing_id": editor.listing_id, "redirect": editor.redirect_to}

@router.delete("/{draft_id}", status_code=204)
async def discard_draft(draft_id: str, user: UserSession = Depends(get_current_user)):
    _open_editor(draft_id, user)
    registry.discard(draft_id)
    return Response(status_code=204)

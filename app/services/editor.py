"""Listing Draft Editor.

Holds one in-progress listing for one user and runs the three form workflows:
field changes, image batches sent to the object store, and the final submission
to the listing API. Failures are turned into editor state (`error`,
`image_upload_error`) and an `Outcome`; nothing raised by a collaborator
escapes `upload_images` or `submit`.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
from structlog import get_logger
import asyncio
import math

from app.schemas.listing import (
    ListingDraft,
    MAX_AMOUNT,
    MAX_IMAGES,
    NAME_MAX_LENGTH,
    NAME_MIN_LENGTH,
)
from app.schemas.session import UserSession
from app.services.listing_api import ListingApiError
from app.services.progress import ProgressStream, log_progress
from app.services.storage import StorageError, storage_keys

logger = get_logger()

UPLOAD_LIMIT_MESSAGE = f"You can only upload up to {MAX_IMAGES} images."
UPLOAD_FAILED_MESSAGE = "Image upload failed (max 2 MB per image)"
NO_IMAGES_MESSAGE = "You must upload at least one image"
DISCOUNT_MESSAGE = "Discount price must be less than regular price"
SUBMIT_FAILED_MESSAGE = "Submission failed"
RENT_PRICE_UNIT = "$ / month"

class Outcome(str, Enum):
    OK = "ok"
    NOOP = "noop"
    BUSY = "busy"
    LIMIT_EXCEEDED = "limit_exceeded"
    UPLOAD_FAILED = "upload_failed"
    INVALID = "invalid"
    SUBMIT_FAILED = "submit_failed"

class DraftEditorError(Exception):
    pass

class UnknownControlError(DraftEditorError):
    pass

class InvalidControlValueError(DraftEditorError):
    pass

class DraftClosedError(DraftEditorError):
    pass

@dataclass(frozen=True)
class ImageFile:
    filename: str
    data: bytes
    content_type: Optional[str] = None

@dataclass(frozen=True)
class FieldDescriptor:
    kind: str
    setter: Callable[[ListingDraft, Any], None]
    label: str
    required: bool = False
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None

def _assign(attr: str) -> Callable[[ListingDraft, Any], None]:
    def setter(draft: ListingDraft, value: Any) -> None:
        setattr(draft, attr, value)
    return setter

def _choose_category(category: str) -> Callable[[ListingDraft, Any], None]:
    def setter(draft: ListingDraft, _value: Any) -> None:
        draft.category = category
    return setter

def build_field_table() -> Dict[str, FieldDescriptor]:
    """Control id -> descriptor for every control on the listing form."""
    return {
        "name": FieldDescriptor("text", _assign("name"), "Name", required=True,
                                min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH),
        "description": FieldDescriptor("text", _assign("description"), "Description", required=True),
        "address": FieldDescriptor("text", _assign("address"), "Address", required=True),
        "sale": FieldDescriptor("category", _choose_category("sale"), "Sale"),
        "rent": FieldDescriptor("category", _choose_category("rent"), "Rent"),
        "parking": FieldDescriptor("flag", _assign("has_parking"), "Parking"),
        "furnished": FieldDescriptor("flag", _assign("is_furnished"), "Furnished"),
        "offer": FieldDescriptor("flag", _assign("has_offer"), "Offer"),
        "bedrooms": FieldDescriptor("number", _assign("bedrooms"), "Beds", required=True,
                                    minimum=1, maximum=MAX_AMOUNT),
        "bathrooms": FieldDescriptor("number", _assign("bathrooms"), "Baths", required=True,
                                     minimum=1, maximum=MAX_AMOUNT),
        "regularPrice": FieldDescriptor("number", _assign("regular_price"), "Regular price", required=True,
                                        minimum=1, maximum=MAX_AMOUNT),
        "discountPrice": FieldDescriptor("number", _assign("discount_price"), "Discounted price", required=True,
                                         minimum=0, maximum=MAX_AMOUNT),
    }

def form_controls() -> List[dict]:
    controls = []
    for control_id, field in build_field_table().items():
        controls.append({
            "id": control_id,
            "kind": field.kind,
            "label": field.label,
            "required": field.required,
            "min": field.minimum,
            "max": field.maximum,
            "min_length": field.min_length,
            "max_length": field.max_length,
        })
    return controls

def _parse_number(control_id: str, raw: Any):
    if isinstance(raw, bool) or raw is None:
        raise InvalidControlValueError(f"{control_id} expects a number")
    if isinstance(raw, (int, float)):
        number = raw
    else:
        try:
            number = float(str(raw).strip())
        except ValueError:
            raise InvalidControlValueError(f"{control_id} expects a number, got {raw!r}")
    if isinstance(number, float):
        if not math.isfinite(number):
            raise InvalidControlValueError(f"{control_id} expects a finite number")
        if number.is_integer():
            return int(number)
    return number

class ListingDraftEditor:
    def __init__(
        self,
        session: UserSession,
        store,
        api,
        *,
        progress: ProgressStream | None = None,
        max_images: int = MAX_IMAGES,
    ):
        self.session = session
        self._store = store
        self._api = api
        if progress is None:
            progress = ProgressStream()
            progress.subscribe(log_progress)
        self.progress = progress
        self.max_images = max_images
        self.fields = build_field_table()

        self.draft = ListingDraft()
        self.uploading = False
        self.loading = False
        self.error = ""
        self.image_upload_error = ""
        self.listing_id: Optional[str] = None
        self.redirect_to: Optional[str] = None

    @property
    def submitted(self) -> bool:
        return self.listing_id is not None

    @property
    def busy(self) -> bool:
        return self.uploading or self.loading

    def _ensure_open(self):
        if self.submitted:
            raise DraftClosedError(f"Draft already submitted as listing {self.listing_id}")

    def handle_change(self, control_id: str, value: Any = None, checked: Optional[bool] = None) -> None:
        self._ensure_open()
        field = self.fields.get(control_id)
        if field is None:
            raise UnknownControlError(f"Unknown control: {control_id}")
        if field.kind == "category":
            field.setter(self.draft, None)
        elif field.kind == "flag":
            field.setter(self.draft, bool(checked))
        elif field.kind == "number":
            field.setter(self.draft, _parse_number(control_id, value))
        else:
            field.setter(self.draft, "" if value is None else str(value))

    async def upload_images(self, files: Sequence[ImageFile]) -> Outcome:
        self._ensure_open()
        if not files:
            return Outcome.NOOP
        if self.busy:
            return Outcome.BUSY
        if len(self.draft.image_urls) + len(files) > self.max_images:
            self.image_upload_error = UPLOAD_LIMIT_MESSAGE
            logger.info(
                "Rejected image batch over limit",
                user_id=self.session.id,
                current=len(self.draft.image_urls),
                selected=len(files),
            )
            return Outcome.LIMIT_EXCEEDED

        self.uploading = True
        self.image_upload_error = ""
        try:
            keys = storage_keys([f.filename for f in files])
            # gather keeps results in selection order, not completion order
            urls = await asyncio.gather(*(self._store_image(f, key) for f, key in zip(files, keys)))
        except StorageError as e:
            logger.error("Image upload failed", key=e.key, status_code=e.status_code, error=e.message)
            self.image_upload_error = UPLOAD_FAILED_MESSAGE
            return Outcome.UPLOAD_FAILED
        finally:
            self.uploading = False

        if self.submitted:
            logger.warning("Dropped image batch for submitted draft",
                           user_id=self.session.id, listing_id=self.listing_id)
            return Outcome.BUSY
        self.draft.image_urls = [*self.draft.image_urls, *urls]
        logger.info("Uploaded image batch", user_id=self.session.id, uploaded=len(urls),
                    total=len(self.draft.image_urls))
        return Outcome.OK

    async def _store_image(self, image: ImageFile, key: str) -> str:
        return await self._store.upload(key, image.data, content_type=image.content_type, progress=self.progress)

    def remove_image(self, index: int) -> str:
        self._ensure_open()
        urls = self.draft.image_urls
        if not 0 <= index < len(urls):
            raise IndexError(f"No image at position {index}")
        removed = urls[index]
        self.draft.image_urls = [url for i, url in enumerate(urls) if i != index]
        return removed

    def validate(self) -> Optional[str]:
        if not self.draft.image_urls:
            return NO_IMAGES_MESSAGE
        if self.draft.has_offer and self.draft.discount_price >= self.draft.regular_price:
            return DISCOUNT_MESSAGE
        return None

    def payload(self) -> dict:
        body = self.draft.model_dump(by_alias=True)
        body["userRef"] = self.session.id
        return body

    async def submit(self) -> Outcome:
        self._ensure_open()
        if self.busy:
            return Outcome.BUSY
        problem = self.validate()
        if problem:
            self.error = problem
            return Outcome.INVALID

        self.loading = True
        self.error = ""
        try:
            created = await self._api.create_listing(self.payload(), token=self.session.token)
        except ListingApiError as e:
            logger.warning("Listing submission failed", user_id=self.session.id,
                           status_code=e.status_code, error=e.message)
            self.error = e.message or SUBMIT_FAILED_MESSAGE
            return Outcome.SUBMIT_FAILED
        finally:
            self.loading = False

        self.listing_id = str(created["_id"])
        self.redirect_to = f"/listing/{self.listing_id}"
        logger.info("Listing created", user_id=self.session.id, listing_id=self.listing_id)
        return Outcome.OK

    def state(self) -> dict:
        urls = self.draft.image_urls
        return {
            "draft": self.draft.model_copy(deep=True),
            "uploading": self.uploading,
            "loading": self.loading,
            "error": self.error,
            "image_upload_error": self.image_upload_error,
            "upload_enabled": not self.uploading,
            "submit_enabled": not self.busy,
            "image_count": len(urls),
            "max_images": self.max_images,
            "cover_image": urls[0] if urls else None,
            "price_unit": RENT_PRICE_UNIT if self.draft.category == "rent" else None,
        }

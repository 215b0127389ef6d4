from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Literal, Optional, Union

MAX_IMAGES = 6
NAME_MIN_LENGTH = 10
NAME_MAX_LENGTH = 62
MAX_AMOUNT = 10_000_000

Number = Union[int, float]
Category = Literal["sale", "rent"]

class ListingDraft(BaseModel):
    """In-progress listing record. Serializes with the listing API's field names."""
    model_config = ConfigDict(populate_by_name=True)

    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")
    name: str = ""
    description: str = ""
    address: str = ""
    category: Category = Field("rent", alias="type")
    bedrooms: Number = 1
    bathrooms: Number = 1
    regular_price: Number = Field(50, alias="regularPrice")
    discount_price: Number = Field(0, alias="discountPrice")
    has_offer: bool = Field(False, alias="offer")
    has_parking: bool = Field(False, alias="parking")
    is_furnished: bool = Field(False, alias="furnished")

class ListingForm(BaseModel):
    """Constraints the form controls put on a draft before it may be submitted.

    Image count and the offer/price rule are checked by the editor itself.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=NAME_MIN_LENGTH, max_length=NAME_MAX_LENGTH)
    description: str = Field(min_length=1)
    address: str = Field(min_length=1)
    category: Category = Field(alias="type")
    bedrooms: int = Field(ge=1, le=MAX_AMOUNT)
    bathrooms: int = Field(ge=1, le=MAX_AMOUNT)
    regular_price: float = Field(alias="regularPrice", ge=1, le=MAX_AMOUNT)
    discount_price: float = Field(alias="discountPrice")
    has_offer: bool = Field(alias="offer")

    @model_validator(mode="after")
    def _discount_in_bounds(self):
        # discountPrice is only a visible control while an offer is on
        if self.has_offer and not (0 <= self.discount_price <= MAX_AMOUNT):
            raise ValueError(f"discountPrice must be between 0 and {MAX_AMOUNT}")
        return self

class FieldChange(BaseModel):
    id: str
    value: Optional[Union[str, int, float]] = None
    checked: Optional[bool] = None

class FormControl(BaseModel):
    id: str
    kind: Literal["category", "flag", "text", "number"]
    label: str
    required: bool = False
    min: Optional[Number] = None
    max: Optional[Number] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None

class FormResponse(BaseModel):
    controls: List[FormControl]
    max_images: int
    accept: str

class DraftStateResponse(BaseModel):
    draft_id: str
    draft: ListingDraft
    uploading: bool
    loading: bool
    error: str
    image_upload_error: str
    upload_enabled: bool
    submit_enabled: bool
    image_count: int
    max_images: int
    cover_image: Optional[str] = None
    price_unit: Optional[str] = None

class SubmitResponse(BaseModel):
    listing_id: str
    redirect: str

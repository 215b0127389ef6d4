import asyncio
import pytest
from app.services.editor import (
    DISCOUNT_MESSAGE,
    NO_IMAGES_MESSAGE,
    UPLOAD_FAILED_MESSAGE,
    UPLOAD_LIMIT_MESSAGE,
    DraftClosedError,
    ImageFile,
    InvalidControlValueError,
    ListingDraftEditor,
    Outcome,
    UnknownControlError,
)
from app.services.listing_api import ListingApiError
from fakes import FakeListingApi, FakeObjectStore, filename_of

def images(*names):
    return [ImageFile(filename=n, data=b"\x89PNG" + n.encode(), content_type="image/png") for n in names]

def ready_editor(session, store, api, urls=("https://cdn.test/a.png",)):
    editor = ListingDraftEditor(session, store, api)
    editor.draft.image_urls = list(urls)
    return editor

def test_new_draft_defaults(session, store, api):
    editor = ListingDraftEditor(session, store, api)
    draft = editor.draft
    assert draft.image_urls == []
    assert draft.category == "rent"
    assert (draft.bedrooms, draft.bathrooms, draft.regular_price, draft.discount_price) == (1, 1, 50, 0)
    assert not (draft.has_offer or draft.has_parking or draft.is_furnished)
    assert editor.state()["price_unit"] == "$ / month"

def test_handle_change_dispatches_by_control_kind(session, store, api):
    editor = ListingDraftEditor(session, store, api)
    editor.handle_change("sale")
    editor.handle_change("offer", checked=True)
    editor.handle_change("parking", checked=True)
    editor.handle_change("name", value="Sunny hostel by the sea")
    editor.handle_change("bedrooms", value="3")
    editor.handle_change("regularPrice", value="120.5")

    draft = editor.draft
    assert draft.category == "sale"
    assert draft.has_offer and draft.has_parking and not draft.is_furnished
    assert draft.name == "Sunny hostel by the sea"
    assert draft.bedrooms == 3 and isinstance(draft.bedrooms, int)
    assert draft.regular_price == 120.5
    assert editor.state()["price_unit"] is None

    editor.handle_change("rent", checked=False)
    assert draft.category == "rent"
    editor.handle_change("offer", checked=False)
    assert draft.has_offer is False

def test_handle_change_rejects_unknown_control_and_bad_numbers(session, store, api):
    editor = ListingDraftEditor(session, store, api)
    with pytest.raises(UnknownControlError):
        editor.handle_change("userRef", value="someone-else")
    with pytest.raises(InvalidControlValueError):
        editor.handle_change("bathrooms", value="two")
    with pytest.raises(InvalidControlValueError):
        editor.handle_change("regularPrice", value="")
    assert editor.draft.bathrooms == 1

@pytest.mark.asyncio
async def test_empty_selection_is_a_noop(session, store, api):
    editor = ListingDraftEditor(session, store, api)
    assert await editor.upload_images([]) == Outcome.NOOP
    assert store.started == []
    assert editor.draft.image_urls == []

@pytest.mark.asyncio
async def test_batch_over_limit_is_rejected_before_any_upload(session, store, api):
    existing = [f"https://cdn.test/{i}.png" for i in range(4)]
    editor = ready_editor(session, store, api, urls=existing)

    outcome = await editor.upload_images(images("a.png", "b.png", "c.png"))

    assert outcome == Outcome.LIMIT_EXCEEDED
    assert editor.image_upload_error == UPLOAD_LIMIT_MESSAGE
    assert store.started == []
    assert editor.draft.image_urls == existing
    assert editor.uploading is False

@pytest.mark.asyncio
async def test_batch_filling_exactly_to_the_limit_uploads(session, store, api):
    existing = [f"https://cdn.test/{i}.png" for i in range(4)]
    editor = ready_editor(session, store, api, urls=existing)
    assert await editor.upload_images(images("a.png", "b.png")) == Outcome.OK
    assert len(editor.draft.image_urls) == 6

@pytest.mark.asyncio
async def test_urls_follow_selection_order_not_completion_order(session, api):
    store = FakeObjectStore(delays={"a.png": 0.03, "b.png": 0.02, "c.png": 0.01})
    editor = ready_editor(session, store, api)

    outcome = await editor.upload_images(images("a.png", "b.png", "c.png"))

    assert outcome == Outcome.OK
    assert [filename_of(k) for k in store.completed] == ["c.png", "b.png", "a.png"]
    assert [url.rsplit("/", 1)[1].lstrip("0123456789") for url in editor.draft.image_urls] == [
        "a.png", "a.png", "b.png", "c.png",
    ]
    assert editor.draft.image_urls[0] == "https://cdn.test/a.png"
    assert editor.image_upload_error == ""

@pytest.mark.asyncio
async def test_one_failed_upload_commits_nothing(session, api):
    store = FakeObjectStore(delays={"b.png": 0.01}, fail={"b.png"})
    editor = ready_editor(session, store, api)
    before = list(editor.draft.image_urls)

    outcome = await editor.upload_images(images("a.png", "b.png", "c.png"))

    assert outcome == Outcome.UPLOAD_FAILED
    assert editor.draft.image_urls == before
    assert editor.image_upload_error == UPLOAD_FAILED_MESSAGE
    assert editor.uploading is False
    # a.png and c.png were stored anyway and stay orphaned
    assert sorted(filename_of(k) for k in store.completed) == ["a.png", "c.png"]

@pytest.mark.asyncio
async def test_in_flight_batch_blocks_new_batches_and_submission(session, api):
    store = FakeObjectStore(delays={"slow.png": 0.05})
    editor = ready_editor(session, store, api)

    first = asyncio.create_task(editor.upload_images(images("slow.png")))
    await asyncio.sleep(0.01)
    assert editor.uploading is True
    assert editor.state()["upload_enabled"] is False
    assert editor.state()["submit_enabled"] is False
    assert await editor.upload_images(images("other.png")) == Outcome.BUSY
    assert await editor.submit() == Outcome.BUSY
    assert api.calls == []

    assert await first == Outcome.OK
    assert editor.uploading is False
    assert len(editor.draft.image_urls) == 2

@pytest.mark.asyncio
async def test_new_batch_clears_previous_upload_error(session, store, api):
    editor = ready_editor(session, store, api, urls=[f"u{i}" for i in range(6)])
    await editor.upload_images(images("x.png"))
    assert editor.image_upload_error == UPLOAD_LIMIT_MESSAGE
    editor.remove_image(0)
    assert await editor.upload_images(images("x.png")) == Outcome.OK
    assert editor.image_upload_error == ""

def test_remove_image_keeps_order(session, store, api):
    editor = ready_editor(session, store, api, urls=["u0", "u1", "u2", "u3"])
    assert editor.remove_image(1) == "u1"
    assert editor.draft.image_urls == ["u0", "u2", "u3"]
    assert editor.state()["cover_image"] == "u0"
    with pytest.raises(IndexError):
        editor.remove_image(3)
    with pytest.raises(IndexError):
        editor.remove_image(-1)

@pytest.mark.asyncio
async def test_submit_without_images_makes_no_call(session, store, api):
    editor = ListingDraftEditor(session, store, api)
    assert await editor.submit() == Outcome.INVALID
    assert editor.error == NO_IMAGES_MESSAGE
    assert api.calls == []

@pytest.mark.asyncio
async def test_submit_with_discount_above_regular_price_makes_no_call(session, store, api):
    editor = ready_editor(session, store, api)
    editor.handle_change("offer", checked=True)
    editor.handle_change("regularPrice", value=100)
    editor.handle_change("discountPrice", value=150)

    assert await editor.submit() == Outcome.INVALID
    assert editor.error == DISCOUNT_MESSAGE
    assert api.calls == []

    editor.handle_change("discountPrice", value=100)
    assert await editor.submit() == Outcome.INVALID

@pytest.mark.asyncio
async def test_in_flight_submission_blocks_new_batches(session, store):
    api = FakeListingApi(delay=0.02)
    editor = ready_editor(session, store, api, urls=["u0"])

    submitting = asyncio.create_task(editor.submit())
    await asyncio.sleep(0.005)
    assert editor.loading is True
    assert await editor.upload_images(images("late.png")) == Outcome.BUSY
    assert store.started == []

    assert await submitting == Outcome.OK
    assert api.calls[0]["payload"]["imageUrls"] == ["u0"]
    assert editor.draft.image_urls == ["u0"]
    with pytest.raises(DraftClosedError):
        await editor.upload_images(images("late.png"))

@pytest.mark.asyncio
async def test_image_rule_is_checked_before_discount_rule(session, store, api):
    editor = ListingDraftEditor(session, store, api)
    editor.handle_change("offer", checked=True)
    editor.handle_change("discountPrice", value=500)
    await editor.submit()
    assert editor.error == NO_IMAGES_MESSAGE

@pytest.mark.asyncio
async def test_discount_is_ignored_once_offer_is_off(session, store, api):
    editor = ready_editor(session, store, api)
    editor.handle_change("offer", checked=True)
    editor.handle_change("discountPrice", value=900)
    editor.handle_change("offer", checked=False)

    assert await editor.submit() == Outcome.OK
    assert len(api.calls) == 1

@pytest.mark.asyncio
async def test_successful_submit_posts_draft_and_points_at_listing(session, store, api):
    editor = ready_editor(session, store, api, urls=["u0", "u1"])
    editor.handle_change("name", value="Backpackers Base Camp")
    editor.handle_change("description", value="Dorms and a rooftop bar")
    editor.handle_change("address", value="1 Harbour Road")
    editor.handle_change("furnished", checked=True)

    assert await editor.submit() == Outcome.OK

    assert len(api.calls) == 1
    call = api.calls[0]
    assert call["token"] == "user-jwt"
    assert call["payload"] == {
        "imageUrls": ["u0", "u1"],
        "name": "Backpackers Base Camp",
        "description": "Dorms and a rooftop bar",
        "address": "1 Harbour Road",
        "type": "rent",
        "bedrooms": 1,
        "bathrooms": 1,
        "regularPrice": 50,
        "discountPrice": 0,
        "offer": False,
        "parking": False,
        "furnished": True,
        "userRef": "user-1",
    }
    assert editor.listing_id == "abc123"
    assert editor.redirect_to == "/listing/abc123"
    assert editor.loading is False
    with pytest.raises(DraftClosedError):
        editor.handle_change("name", value="Something else entirely")

@pytest.mark.asyncio
async def test_failed_submit_keeps_draft_for_retry(session, store):
    api = FakeListingApi(error=ListingApiError("Listing name already taken", status_code=400))
    editor = ready_editor(session, store, api)
    editor.handle_change("name", value="Backpackers Base Camp")

    assert await editor.submit() == Outcome.SUBMIT_FAILED
    assert editor.error == "Listing name already taken"
    assert editor.loading is False
    assert editor.draft.name == "Backpackers Base Camp"
    assert editor.listing_id is None

    api.error = None
    api.response = {"_id": "xyz789"}
    assert await editor.submit() == Outcome.OK
    assert editor.error == ""
    assert editor.redirect_to == "/listing/xyz789"
    assert len(api.calls) == 2

@pytest.mark.asyncio
async def test_empty_api_message_falls_back(session, store):
    api = FakeListingApi(error=ListingApiError(""))
    editor = ready_editor(session, store, api)
    assert await editor.submit() == Outcome.SUBMIT_FAILED
    assert editor.error == "Submission failed"

from app.config import settings
from app.services.listing_api import ListingApiClient
from app.services.storage import SupabaseObjectStore

object_store = SupabaseObjectStore(
    settings.SUPABASE_URL,
    settings.SUPABASE_KEY,
    settings.STORAGE_BUCKET,
    timeout=settings.UPLOAD_TIMEOUT_SECONDS,
)
listing_api = ListingApiClient(settings.LISTING_API_URL)

def get_object_store() -> SupabaseObjectStore:
    return object_store

def get_listing_api() -> ListingApiClient:
    return listing_api

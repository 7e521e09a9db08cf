# Listings module
from app.modules.listings.models import Listing, ListingStatus

__all__ = ["Listing", "ListingStatus"]

"""
Database Schemas for TourVista India

MongoDB collections are defined below using Pydantic models. Each class name is
converted to lowercase for the collection name (User -> "user").

We will use these collections:
- user: accounts (regular users and admins)
- tour: the tour catalog, with derived averageRating / totalRatings
- rating: one rating per (user, tour)
- booking: a user's booking of a tour, price captured at booking time
- savedtour: user -> tour bookmarks

Field names are camelCase in MongoDB and on the wire.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["admin", "user"]
BookingStatus = Literal["pending", "confirmed", "cancelled", "completed"]
Region = Literal["north", "south", "west", "east", "central"]
Category = Literal["heritage", "adventure", "beach", "wellness", "cultural", "spiritual"]
Difficulty = Literal["easy", "moderate", "difficult"]

PLACEHOLDER_IMAGE = "https://via.placeholder.com/600x400?text=Tour+Image"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field("user")
    phone: str = ""
    address: str = ""


class Overview(CamelModel):
    highlights: List[str] = []
    group_size: str = ""
    difficulty: Difficulty = "easy"
    age_range: str = ""
    best_season: str = ""
    languages: List[str] = []


class ItineraryDay(CamelModel):
    day: int = Field(..., ge=1)
    title: str = ""
    description: str = ""
    activities: List[str] = []
    meals: str = ""
    accommodation: str = ""


class Requirements(CamelModel):
    physical_level: str = ""
    fitness_level: str = ""
    documents: List[str] = []
    packing_list: List[str] = []


class Discount(CamelModel):
    name: str
    percentage: float = Field(0, ge=0, le=100)
    description: str = ""


class Pricing(CamelModel):
    base_price: Optional[int] = None
    discounts: List[Discount] = []
    payment_policy: str = ""
    cancellation_policy: str = ""


class ImportantInfo(CamelModel):
    booking_cutoff: str = ""
    refund_policy: str = ""
    health_advisory: str = ""
    safety_measures: str = ""


class Tour(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    detailed_description: str = ""
    price: int = Field(..., ge=0, description="Whole rupees")
    duration: str = Field(..., min_length=1)
    image: str = PLACEHOLDER_IMAGE
    images: List[str] = []
    region: Region = "north"
    category: Category = "heritage"
    destination: str = ""
    overview: Overview = Field(default_factory=Overview)
    included: List[str] = []
    excluded: List[str] = []
    itinerary: List[ItineraryDay] = []
    requirements: Requirements = Field(default_factory=Requirements)
    pricing: Pricing = Field(default_factory=Pricing)
    important_info: ImportantInfo = Field(default_factory=ImportantInfo)
    max_participants: int = Field(20, ge=1)
    average_rating: float = Field(0, ge=0, le=5)
    total_ratings: int = Field(0, ge=0)
    is_active: bool = True


class Rating(CamelModel):
    user_id: str
    tour_id: str
    rating: int = Field(..., ge=1, le=5)
    review: str = ""
    date: datetime


class Booking(CamelModel):
    user: str = Field(..., description="Reference to user _id")
    tour: str = Field(..., description="Reference to tour _id")
    participants: int = Field(..., ge=1, le=10)
    travel_date: datetime
    booking_date: datetime
    total_price: int = Field(..., ge=0, description="tour.price x participants at booking time")
    status: BookingStatus = "confirmed"
    special_requirements: str = ""
    contact_number: str = ""
    email: str = ""
    idempotency_key: Optional[str] = None


class SavedTour(CamelModel):
    user: str
    tour: str

import logging

from pymongo.database import Database

from auth import AuthService
from database import create_document
from schemas import Tour as TourSchema, User as UserSchema

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@tourvista.com"
DEFAULT_ADMIN_PASSWORD = "Admin@123"

DEFAULT_TOURS = [
    {
        "title": "Taj Mahal & Golden Triangle",
        "description": "Experience the iconic Taj Mahal and explore Delhi, Agra, and Jaipur.",
        "price": 24999,
        "duration": "7 days",
        "image": "https://images.unsplash.com/photo-1564507592333-c60657eea523",
        "region": "north",
        "category": "heritage",
        "destination": "North India",
    },
    {
        "title": "Kerala Backwaters & Beaches",
        "description": "Houseboat experience through serene backwaters and beautiful beaches.",
        "price": 18999,
        "duration": "8 days",
        "image": "https://images.unsplash.com/photo-1593693399748-2c36d5ea7d89",
        "region": "south",
        "category": "beach",
        "destination": "South India",
    },
]


def ensure_default_data(db: Database, auth: AuthService) -> None:
    """Create the default admin and catalog on an empty database."""
    if db["user"].find_one({"email": DEFAULT_ADMIN_EMAIL}) is None:
        admin = UserSchema(
            name="Administrator",
            email=DEFAULT_ADMIN_EMAIL,
            password_hash=auth.hash_password(DEFAULT_ADMIN_PASSWORD),
            role="admin",
            phone="+91 9876543210",
        )
        create_document("user", admin)
        logger.info("Created default admin user %s", DEFAULT_ADMIN_EMAIL)

    if db["tour"].count_documents({}) == 0:
        for t in DEFAULT_TOURS:
            tour = TourSchema(**t)
            tour.detailed_description = tour.description
            tour.pricing.base_price = tour.price
            create_document("tour", tour)
        logger.info("Created %d default tours", len(DEFAULT_TOURS))

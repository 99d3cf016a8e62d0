"""Merchant reference data: MCC label map, city bounding boxes and the seeded catalog"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

from spendguard.domain.models import Merchant, MerchantCategory


@dataclass(frozen=True)
class GeoBounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    @property
    def centre(self) -> Tuple[float, float]:
        return (self.min_lat + self.max_lat) / 2, (self.min_lng + self.max_lng) / 2


MCC_CATEGORY_MAP: Dict[str, Tuple[str, ...]] = {
    "5942": ("books", "education", "stationery"),
    "5812": ("food", "restaurant", "beverages"),
    "5411": ("grocery", "food", "daily-essentials"),
    "5732": ("electronics", "technology"),
    "5912": ("medical", "healthcare", "pharmacy"),
    "5999": ("mixed", "general"),
    "8099": ("medical", "healthcare", "hospital"),
    "8299": ("education", "school", "training"),
}

CITY_GEO_BOUNDS: Dict[str, GeoBounds] = {
    "chennai": GeoBounds(12.9, 13.3, 80.1, 80.4),
    "mumbai": GeoBounds(18.9, 19.3, 72.7, 73.1),
    "delhi": GeoBounds(28.4, 28.9, 76.8, 77.5),
    "bengaluru": GeoBounds(12.8, 13.2, 77.4, 77.8),
    "hyderabad": GeoBounds(17.2, 17.6, 78.3, 78.7),
    "pune": GeoBounds(18.4, 18.7, 73.7, 74.0),
}

CITY_ALIASES: Dict[str, str] = {"bangalore": "bengaluru", "new delhi": "delhi", "bombay": "mumbai", "madras": "chennai"}


def canonical_city(city: str) -> str:
    key = city.strip().lower()
    return CITY_ALIASES.get(key, key)


SEED_MERCHANTS: List[Merchant] = [
    Merchant(
        merchant_id="MRC001",
        name="Bookworm Paradise",
        classification_code="5942",
        category=MerchantCategory.BOOKS,
        category_label="Book Store",
        city="Chennai",
        region="Tamil Nadu",
        latitude=13.0827,
        longitude=80.2707,
        certification_tier=1,
        certified=True,
        risk_score=0.05,
        product_tags=("textbooks", "novels", "stationery"),
    ),
    Merchant(
        merchant_id="MRC002",
        name="Saravana Bhavan",
        classification_code="5812",
        category=MerchantCategory.FOOD,
        category_label="Restaurant",
        city="Chennai",
        region="Tamil Nadu",
        latitude=13.0569,
        longitude=80.2425,
        certification_tier=1,
        certified=True,
        risk_score=0.08,
        product_tags=("meals", "beverages", "snacks"),
    ),
    Merchant(
        merchant_id="MRC003",
        name="Metro Supermart",
        classification_code="5411",
        category=MerchantCategory.GROCERY,
        category_label="Supermarket",
        city="Mumbai",
        region="Maharashtra",
        latitude=19.0760,
        longitude=72.8777,
        certification_tier=1,
        certified=True,
        risk_score=0.06,
        product_tags=("groceries", "dairy", "vegetables", "packaged-food"),
    ),
    Merchant(
        merchant_id="MRC004",
        name="TechZone Electronics",
        classification_code="5732",
        category=MerchantCategory.ELECTRONICS,
        category_label="Electronics Store",
        city="Bengaluru",
        region="Karnataka",
        latitude=12.9716,
        longitude=77.5946,
        certification_tier=2,
        certified=True,
        risk_score=0.12,
        product_tags=("laptops", "phones", "accessories", "cables"),
    ),
    Merchant(
        merchant_id="MRC005",
        name="Healing Touch Pharmacy",
        classification_code="5912",
        category=MerchantCategory.MEDICAL,
        category_label="Pharmacy",
        city="Delhi",
        region="Delhi",
        latitude=28.6139,
        longitude=77.2090,
        certification_tier=2,
        certified=True,
        risk_score=0.04,
        product_tags=("medicines", "healthcare", "supplements"),
    ),
    Merchant(
        merchant_id="MRC006",
        name="MixMart",
        classification_code="5999",
        category=MerchantCategory.MIXED,
        category_label="Mixed-Category Retail",
        city="Chennai",
        region="Tamil Nadu",
        latitude=13.0878,
        longitude=80.2785,
        certification_tier=2,
        certified=False,
        risk_score=0.35,
        product_tags=("books", "food", "stationery", "beverages"),
    ),
    Merchant(
        merchant_id="MRC007",
        name="Apollo Medical Center",
        classification_code="8099",
        category=MerchantCategory.MEDICAL,
        category_label="Hospital",
        city="Hyderabad",
        region="Telangana",
        latitude=17.3850,
        longitude=78.4867,
        certification_tier=3,
        certified=True,
        risk_score=0.03,
        product_tags=("consultation", "diagnostics", "surgery"),
    ),
    Merchant(
        merchant_id="MRC008",
        name="EduLearn Institute",
        classification_code="8299",
        category=MerchantCategory.EDUCATION,
        category_label="Educational Institution",
        city="Pune",
        region="Maharashtra",
        latitude=18.5204,
        longitude=73.8567,
        certification_tier=2,
        certified=True,
        risk_score=0.05,
        product_tags=("tuition", "courses", "workshops"),
    ),
]

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Records are stored and served with the camelCase keys of the original blob layout."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VehicleType(str, Enum):
    SEDAN = "Sedan (Small Items)"
    SUV = "SUV (Medium Items)"
    PICKUP = "Pickup Truck (Large Items)"
    BOX_TRUCK = "Box Truck (Whole Room)"
    VAN = "Cargo Van (Weather Sensitive)"


class JobStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"


class Role(str, Enum):
    DRIVER = "driver"
    REQUESTER = "requester"


# --- Persisted records ---
class Job(CamelModel):
    id: str
    created_at: int  # epoch milliseconds
    title: str
    description: str = ""
    pickup_location: str
    dropoff_location: str
    image_url: Optional[str] = None
    fragility: Optional[str] = None
    handling_instructions: Optional[str] = None
    price: float  # driver payout, may carry cents
    platform_fee: int
    vehicle_type: VehicleType
    distance_miles: float
    ai_analysis: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    driver_confirmed: bool = False
    requester_confirmed: bool = False
    rating_for_driver: Optional[int] = None
    rating_for_requester: Optional[int] = None
    requester_id: Optional[str] = None
    driver_id: Optional[str] = None
    version: int = 0

    @property
    def total_cost(self) -> float:
        return self.price + self.platform_fee


class User(CamelModel):
    id: str
    name: str
    email: str
    avatar: Optional[str] = None
    is_available: bool = False
    version: int = 0


class StoreBlob(BaseModel):
    jobs: List[Job] = []
    users: List[User] = []


# --- Job requests ---
class JobDraft(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    title: str = ""
    description: str = Field(min_length=1)
    pickup_location: str = Field(min_length=1)
    dropoff_location: str = Field(min_length=1)
    price: float = Field(ge=0)
    vehicle_type: VehicleType = VehicleType.PICKUP
    distance_miles: float = Field(default=5, ge=0)
    image_url: Optional[str] = None
    fragility: Optional[str] = None
    handling_instructions: Optional[str] = None
    ai_analysis: Optional[str] = None


class RatingRequest(CamelModel):
    role: Role
    score: int


class BoardSort(str, Enum):
    NEWEST = "newest"
    PRICE_HIGH = "price_high"
    DISTANCE = "distance"


class JobBoard(CamelModel):
    available: List[Job]
    active: List[Job]


class ProfileSummary(CamelModel):
    active_requests: int
    total_spent: float
    completed_drives: int
    total_earnings: float


# --- Pricing ---
class QuoteRequest(CamelModel):
    payout: float = Field(ge=0)


class Quote(CamelModel):
    payout: float
    fee: int  # whole dollars
    total: float


# --- AI collaborator ---
class AnalysisRequest(CamelModel):
    image: Optional[str] = None  # base64, optionally as a data URL
    description: str = ""
    distance_miles: float = Field(default=5, ge=0)


class AIAnalysisResult(CamelModel):
    vehicle_type: VehicleType
    estimated_weight_lb: float
    difficulty_score: float = Field(ge=1, le=10)
    reasoning: str
    suggested_price: float


# --- Auth shim ---
class AuthMode(str, Enum):
    SIGNIN = "signin"
    SIGNUP = "signup"


class SsoProvider(str, Enum):
    GOOGLE = "google"
    APPLE = "apple"


class CredentialsRequest(CamelModel):
    email: str
    password: str = Field(min_length=1)
    mode: AuthMode = AuthMode.SIGNIN

    @field_validator("email")
    @classmethod
    def email_must_look_like_email(cls, value: str) -> str:
        value = value.strip()
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError("invalid email address")
        return value


class SsoRequest(CamelModel):
    provider: SsoProvider


class AuthChallenge(CamelModel):
    challenge_id: str
    destination_hint: str
    code_length: int
    expires_at: int  # epoch milliseconds
    demo: bool = True


class VerifyRequest(CamelModel):
    challenge_id: str
    code: str


class AvailabilityUpdate(CamelModel):
    is_available: bool


# --- Notifications ---
class BannerKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ALERT = "alert"


class Audience(str, Enum):
    DRIVER = "driver"
    REQUESTER = "requester"
    USER = "user"  # the acting user, whatever surface they are on


class Banner(CamelModel):
    id: str
    title: str
    message: str
    kind: BannerKind
    audience: Audience
    recipient_id: Optional[str] = None
    created_at: int
    dismiss_after_seconds: float

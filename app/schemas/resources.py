import re
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_EMAIL_RE = re.compile(r"^[\w.+-]+@[\w-]+(\.[\w-]+)*\.\w{2,}$")
_URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$")


class _Payload(BaseModel):
    # Clients send camelCase, models take snake_case; unknown keys such as
    # averageCost are rejected rather than ignored.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid", str_strip_whitespace=True)


def _check_email(value: str) -> str:
    if not _EMAIL_RE.fullmatch(value):
        raise ValueError("Please add a valid email")
    return value.lower()


def _check_url(value: str) -> str:
    if not _URL_RE.fullmatch(value):
        raise ValueError("Please use a valid URL with HTTP or HTTPS")
    return value


Email = Annotated[str, AfterValidator(_check_email)]
Url = Annotated[str, AfterValidator(_check_url)]


class BootcampCreate(_Payload):
    name: str = Field(min_length=1, max_length=50)
    description: str = Field(min_length=1, max_length=500)
    website: Optional[Url] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    email: Optional[Email] = None
    address: Optional[str] = Field(default=None, max_length=300)
    careers: list[str] = Field(default_factory=list)
    housing: bool = False
    job_assistance: bool = False
    job_guarantee: bool = False
    accept_gi: bool = False


class BootcampUpdate(_Payload):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    website: Optional[Url] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    email: Optional[Email] = None
    address: Optional[str] = Field(default=None, max_length=300)
    careers: Optional[list[str]] = None
    housing: Optional[bool] = None
    job_assistance: Optional[bool] = None
    job_guarantee: Optional[bool] = None
    accept_gi: Optional[bool] = None


SkillLevel = Literal["beginner", "intermediate", "advanced"]


class CourseCreate(_Payload):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=500)
    weeks: str = Field(min_length=1, max_length=20)
    tuition: float = Field(ge=0)
    minimum_skill: SkillLevel
    scholarship_available: bool = False


class CourseUpdate(_Payload):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    weeks: Optional[str] = Field(default=None, min_length=1, max_length=20)
    tuition: Optional[float] = Field(default=None, ge=0)
    minimum_skill: Optional[SkillLevel] = None
    scholarship_available: Optional[bool] = None


class ReviewCreate(_Payload):
    title: str = Field(min_length=1, max_length=100)
    text: str = Field(min_length=1, max_length=500)
    rating: int = Field(ge=1, le=10)


class ReviewUpdate(_Payload):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    text: Optional[str] = Field(default=None, min_length=1, max_length=500)
    rating: Optional[int] = Field(default=None, ge=1, le=10)


class RegisterIn(_Payload):
    name: str = Field(min_length=1, max_length=200)
    email: Email
    password: str = Field(min_length=6)
    role: Literal["user", "publisher"] = "user"


class LoginIn(_Payload):
    email: Email
    password: str


class TokenOut(BaseModel):
    success: bool = True
    token: str


class UserCreate(_Payload):
    name: str = Field(min_length=1, max_length=200)
    email: Email
    password: str = Field(min_length=6)
    role: Literal["user", "publisher", "admin"] = "user"


class UserUpdate(_Payload):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[Email] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role: Optional[Literal["user", "publisher", "admin"]] = None

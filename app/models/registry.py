# Importing this module registers every mapped class on Base.metadata.
from app.models.bootcamp import Bootcamp
from app.models.course import Course
from app.models.review import Review
from app.models.user import User

__all__ = ["Bootcamp", "Course", "Review", "User"]

"""ORM model registry: import all models so Alembic autogenerate discovers them."""

from schools_api.models.import_job import ImportJob
from schools_api.models.school import School

__all__ = [
    "ImportJob",
    "School",
]

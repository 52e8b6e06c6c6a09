"""
Search projections

Only the minimal denormalized fields go to the index; full entities never do.
"""

from collections.abc import Mapping
from typing import Any

from foodxchange.accounts.models import UserRole

PROJECT_FIELDS = ("id", "title", "description", "category", "status", "created_at", "deadline")
SUPPLIER_FIELDS = ("id", "company_name", "country", "role", "is_verified")

PROJECTS_SCHEMA: dict[str, Any] = {
    "id": "keyword",
    "title": "text",
    "description": "text",
    "category": "keyword",
    "status": "keyword",
    "created_at": "date",
    "deadline": "date",
}

SUPPLIERS_SCHEMA: dict[str, Any] = {
    "id": "keyword",
    "company_name": "text",
    "country": "keyword",
    "role": "keyword",
    "is_verified": "boolean",
}


def project_projection(doc: Mapping[str, Any]) -> dict[str, Any]:
    """Index document for a stored project"""
    return {field: doc.get(field) for field in PROJECT_FIELDS}


def supplier_projection(doc: Mapping[str, Any]) -> dict[str, Any] | None:
    """Index document for a stored company profile; None unless it is a vendor"""
    if doc.get("role") != UserRole.VENDOR.value:
        return None
    return {field: doc.get(field) for field in SUPPLIER_FIELDS}

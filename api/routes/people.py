"""
People API endpoints for Advisor CRM.

Creating a person runs the duplicate matcher first; probable duplicates
come back as 409 with the matches unless the request sets `force`.
"""
from typing import Optional
import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.services.people_service import DuplicatePersonError, PeopleService
from api.services.person import Person
from api.services.store_access import get_store_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/people", tags=["people"])


class PersonResponse(BaseModel):
    """Response model for a person."""
    id: str
    display_name: str
    email: Optional[str] = None
    email_aliases: list[str] = []
    external_contact_ref: Optional[str] = None
    role_badges: list[str] = []
    created_at: str


class PersonListResponse(BaseModel):
    people: list[PersonResponse]
    count: int


class CreatePersonRequest(BaseModel):
    display_name: str
    email: Optional[str] = None
    external_contact_ref: Optional[str] = None
    role_badges: list[str] = []
    force: bool = False


class DuplicateCheckRequest(BaseModel):
    name: str
    email: Optional[str] = None
    threshold: Optional[float] = None


class DuplicateMatchResponse(BaseModel):
    id: str
    display_name: str
    score: float


class DuplicateCheckResponse(BaseModel):
    matches: list[DuplicateMatchResponse]
    count: int


def get_people_service() -> PeopleService:
    return PeopleService(get_store_access())


def _to_response(person: Person) -> PersonResponse:
    return PersonResponse(**person.to_dict())


@router.get("", response_model=PersonListResponse)
def list_people(q: Optional[str] = Query(default=None, description="Name substring filter")):
    people = get_people_service().list_people(query=q)
    return PersonListResponse(people=[_to_response(p) for p in people], count=len(people))


@router.post("", response_model=PersonResponse, status_code=201)
def create_person(request: CreatePersonRequest):
    """Create a person; 409 with matches if they probably exist already."""
    try:
        person = get_people_service().create_person(
            display_name=request.display_name,
            email=request.email,
            external_contact_ref=request.external_contact_ref,
            role_badges=request.role_badges,
            force=request.force,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DuplicatePersonError as e:
        return JSONResponse(
            status_code=409,
            content={
                "error": "Probable duplicate",
                "detail": str(e),
                "matches": [m.to_dict() for m in e.matches],
            },
        )
    return _to_response(person)


@router.post("/duplicates", response_model=DuplicateCheckResponse)
def find_duplicates(request: DuplicateCheckRequest):
    """Score a name against existing people without creating anything."""
    matches = get_people_service().find_duplicates(request.name, request.email, request.threshold)
    return DuplicateCheckResponse(
        matches=[DuplicateMatchResponse(**m.to_dict()) for m in matches],
        count=len(matches),
    )


@router.get("/{person_id}", response_model=PersonResponse)
def get_person(person_id: str):
    person = get_people_service().get_person(person_id)
    if person is None:
        raise HTTPException(status_code=404, detail=f"Person '{person_id}' not found")
    return _to_response(person)


@router.delete("/{person_id}")
def delete_person(person_id: str):
    if not get_people_service().delete_person(person_id):
        raise HTTPException(status_code=404, detail=f"Person '{person_id}' not found")
    return {"deleted": True, "id": person_id}

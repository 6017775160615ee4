"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, validator

from ballotbox.shared.models import utc_now


class RegisterRequest(BaseModel):
    """Voter registration request model."""

    full_name: str = Field(..., description="Voter full name")
    email: str = Field(..., description="Voter email, unique")
    password: str = Field(..., description="Password")
    confirm: str = Field(..., description="Password confirmation")

    @validator("email")
    def validate_email(cls, v):
        """Validate email has a local part and a domain."""
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or not domain:
            raise ValueError("Email must look like name@domain")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "full_name": "Ada Lovelace",
                "email": "ada@example.org",
                "password": "analytical-engine",
                "confirm": "analytical-engine"
            }
        }


class RegisterResponse(BaseModel):
    """Registration response model."""

    user_id: int = Field(..., description="Id of the new voter")
    status: str = Field(default="registered", description="Status of the registration")
    message: str = Field(default="Registration successful", description="Response message")


class LoginRequest(BaseModel):
    """Login request model."""

    email: str = Field(..., description="Registered email")
    full_name: str = Field(..., description="Full name as registered, case-insensitive")
    password: str = Field(..., description="Password")

    class Config:
        json_schema_extra = {
            "example": {
                "email": "ada@example.org",
                "full_name": "ada lovelace",
                "password": "analytical-engine"
            }
        }


class SessionResponse(BaseModel):
    """Session established response model."""

    status: Literal["session_established"] = "session_established"
    token: str = Field(..., description="Bearer token for the vote endpoint")
    token_type: str = Field(default="bearer")
    voter_id: int
    full_name: str
    email: str
    expires_at: datetime


class VoteRequest(BaseModel):
    """Vote submission request model."""

    # Optional so an empty selection maps to missing_candidate instead of 422
    candidate_name: Optional[str] = Field(default=None, description="Chosen candidate name")

    class Config:
        json_schema_extra = {
            "example": {
                "candidate_name": "Green Party"
            }
        }


class VoteReceiptModel(BaseModel):
    """Vote receipt model."""

    voter_id: int
    candidate_name: str
    cast_at: datetime


class VoteResponse(BaseModel):
    """Vote accepted response model."""

    status: Literal["vote_accepted"] = "vote_accepted"
    receipt: VoteReceiptModel
    message: str = Field(default="Vote recorded", description="Response message")


class CandidateModel(BaseModel):
    """Candidate listed on the ballot."""

    name: str
    symbol: str


class ResultEntryModel(BaseModel):
    """One ranked candidate."""

    name: str
    symbol: str
    votes: int
    percentage: float


class ResultsResponse(BaseModel):
    """Ranked results response model."""

    entries: list[ResultEntryModel] = Field(..., description="Candidates by votes, then name")
    total_votes: int = Field(..., description="Total number of votes")
    has_votes: bool = Field(..., description="False while no vote has been cast")
    winner: Optional[ResultEntryModel] = Field(default=None, description="Leading candidate")

    class Config:
        json_schema_extra = {
            "example": {
                "entries": [
                    {"name": "A", "symbol": "img/a.png", "votes": 50, "percentage": 50.0},
                    {"name": "B", "symbol": "img/b.png", "votes": 30, "percentage": 30.0},
                    {"name": "C", "symbol": "img/c.png", "votes": 20, "percentage": 20.0}
                ],
                "total_votes": 100,
                "has_votes": True,
                "winner": {"name": "A", "symbol": "img/a.png", "votes": 50, "percentage": 50.0}
            }
        }


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(default_factory=utc_now, description="Health check timestamp")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict = Field(default_factory=dict, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "already_voted",
                "message": "Voter 42 already voted",
                "details": {}
            }
        }

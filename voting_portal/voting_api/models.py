"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, validator


class LoginRequest(BaseModel):
    """Login request model."""

    email: str = Field(..., description="Voter email")
    spe_number: str = Field(..., description="Voter registration number")
    recaptchaToken: Optional[str] = Field(default=None, description="reCAPTCHA response token")

    @validator("email")
    def validate_email(cls, v):
        """Reject blank emails."""
        v = v.strip()
        if not v:
            raise ValueError("Email is required")
        return v

    @validator("spe_number")
    def validate_spe_number(cls, v):
        """Reject blank registration numbers."""
        v = v.strip()
        if not v:
            raise ValueError("Registration number is required")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "email": "voter@example.org",
                "spe_number": "SPE-00123",
                "recaptchaToken": "03AGdBq2..."
            }
        }


class LoginResponse(BaseModel):
    success: bool = True


class AuthCheckResponse(BaseModel):
    authenticated: bool = True
    voter_id: str
    level: int


class VoteRequest(BaseModel):
    """
    Vote submission request model.

    Fields are optional; the engine rejects missing values after the
    session check.
    """

    candidateId: Optional[str] = Field(default=None, description="Candidate ID")
    position: Optional[str] = Field(default=None, description="Position being contested")

    class Config:
        json_schema_extra = {
            "example": {
                "candidateId": "3f1c2a9e-8d41-4b0e-9a6f-6f1d2c7b5e10",
                "position": "President"
            }
        }


class VoteResponse(BaseModel):
    """Vote submission response model."""

    success: bool = True
    hasCompletedVoting: bool
    redirect: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "hasCompletedVoting": False,
                "redirect": None
            }
        }


class VoteRecord(BaseModel):
    position: str
    candidate_id: str
    voted_at: datetime


class VoteHistoryResponse(BaseModel):
    """The caller's own votes."""

    votes: List[VoteRecord]
    hasCompletedVoting: bool


class CandidateInfo(BaseModel):
    """Candidate information model."""

    id: str
    full_name: str
    bio: str = ""
    image_url: Optional[str] = None


class PositionCandidates(BaseModel):
    position: str
    candidates: List[CandidateInfo]


class CatalogResponse(BaseModel):
    positions: List[PositionCandidates]


class CandidateResult(BaseModel):
    candidate_id: str
    full_name: str
    image_url: Optional[str] = None
    votes: int
    percentage: float


class PositionResult(BaseModel):
    position: str
    total_votes: int
    candidates: List[CandidateResult]


class ResultsResponse(BaseModel):
    """Election results response model."""

    positions: List[PositionResult]
    total_voters_completed: int
    updated_at: datetime


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(..., description="Health check timestamp")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error kind")
    message: str = Field(..., description="Error message")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "AlreadyVoted",
                "message": "You have already voted for this position"
            }
        }

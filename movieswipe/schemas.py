# movieswipe/schemas.py
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional

# --- User Schemas ---
class UserBase(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    display_name: str = Field(..., min_length=1, max_length=100)

class UserCreate(UserBase):
    external_id: str = Field(..., min_length=1, max_length=255)

class UserUpdate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=100)

class User(UserBase):
    id: int
    external_id: str
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# --- Preference Schemas ---
class GenrePreference(BaseModel):
    genre_id: int = Field(..., gt=0)
    genre_name: str = Field(..., min_length=1, max_length=100)
    weight: int = Field(..., ge=1, le=10)

    class Config:
        from_attributes = True

class PreferencesUpdate(BaseModel):
    preferences: List[GenrePreference]

class GenreWeight(BaseModel):
    """Aggregated weight of one genre across a group (not bounded to 1..10)."""
    genre_id: int
    genre_name: str
    weight: int

class GroupPreferences(BaseModel):
    group_id: int
    member_count: int # members with at least one preference
    ranked_preferences: List[GenreWeight] = []
    common_genres: List[GenreWeight] = []
    individual_preferences: Dict[int, List[GenrePreference]] = {} # user_id -> preferences

class GenreStat(BaseModel):
    genre_id: int
    genre_name: str
    count: int
    percentage: int

class GenreStats(BaseModel):
    group_id: int
    total_users: int
    genre_stats: List[GenreStat]
    most_popular_genres: List[str]

# --- Group Schemas ---
class GroupCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=500)

class JoinGroup(BaseModel):
    invitation_code: str = Field(..., min_length=8, max_length=8)

class Member(BaseModel):
    user_id: int
    display_name: str
    joined_at: Optional[datetime] = None
    preferences: List[GenrePreference] = []

class Group(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    owner_id: int
    invitation_code: str
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    members: List[Member] = []

class InvitationCode(BaseModel):
    group_id: int
    invitation_code: str

class GroupStats(BaseModel):
    group_id: int
    total_members: int
    members_with_preferences: int
    created_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None

# --- Catalog Schemas ---
class CatalogGenre(BaseModel):
    id: int
    name: str

class CatalogMovie(BaseModel):
    id: int
    title: str
    overview: str = ""
    poster_url: Optional[str] = None
    release_date: Optional[str] = None # "YYYY-MM-DD" as delivered by the catalog
    genres: List[CatalogGenre] = []
    vote_average: float = 0.0
    vote_count: int = 0
    runtime: Optional[int] = None

# --- Recommendation Schemas ---
class MovieCandidate(BaseModel):
    movie_id: int
    title: str
    year: Optional[int] = None
    genres: List[str] = []
    poster_url: Optional[str] = None
    rating: float = 0.0
    score: float
    reason: str = ""

    class Config:
        from_attributes = True

class RecommendationResponse(BaseModel):
    group_id: int
    recommendations: List[MovieCandidate]
    genres_used: List[int] = [] # top genre ids the catalog was queried with

# --- Voting Schemas ---
class SessionSettings(BaseModel):
    max_recommendations: int = Field(10, ge=5, le=20)
    voting_duration: int = Field(60, ge=15, le=1440) # minutes
    require_all_members: bool = True

class VotingSession(BaseModel):
    id: int
    group_id: int
    created_by: int
    status: str
    max_recommendations: int
    voting_duration: int
    require_all_members: bool
    winner_movie_id: Optional[int] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    candidates: List[MovieCandidate] = []

    class Config:
        from_attributes = True

class VoteCreate(BaseModel):
    movie_id: int
    vote: Literal["yes", "no"]

class Vote(BaseModel):
    session_id: int
    user_id: int
    movie_id: int
    value: str
    cast_at: datetime

    class Config:
        from_attributes = True

class MovieResult(BaseModel):
    movie_id: int
    title: str
    year: Optional[int] = None
    genres: List[str] = []
    poster_url: Optional[str] = None
    rating: float = 0.0
    yes_votes: int = 0
    no_votes: int = 0
    total_votes: int = 0
    score: float = 0.0
    rank: int
    is_winner: bool = False

    class Config:
        from_attributes = True

class SessionResults(BaseModel):
    session_id: int
    status: str
    winner: Optional[MovieResult] = None
    results: List[MovieResult]
    total_votes: int
    ended_at: Optional[datetime] = None

class VotingStats(BaseModel):
    session_id: int
    session_status: str
    total_members: int
    voted_members: int
    pending_members: int
    participation_rate: int # percent
    total_votes: int
    yes_votes: int
    no_votes: int
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    live_tally: List[MovieResult] = [] # derived, not authoritative until the session ends

class ErrorBody(BaseModel):
    code: str
    kind: str
    message: str

class ErrorResponse(BaseModel):
    error: ErrorBody

# models.py - records returned by manga sources

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

ONGOING = "ONGOING"
COMPLETED = "COMPLETED"
UNKNOWN = "UNKNOWN"


def parse_status(text: Optional[str]) -> str:
    lowered = (text or "").strip().lower()
    if "ongoing" in lowered:
        return ONGOING
    if "completed" in lowered:
        return COMPLETED
    return UNKNOWN


class SearchResult(BaseModel):
    id: str
    title: str
    image: Optional[str] = None
    description: str = ""
    status: str = UNKNOWN


class SearchPage(BaseModel):
    current_page: int
    has_next_page: bool = False
    results: List[SearchResult] = Field(default_factory=list)


class ChapterRef(BaseModel):
    id: str
    title: str = ""
    released_date: str = ""


class MangaInfo(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    image: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    status: str = UNKNOWN
    rating: float = 0
    authors: List[str] = Field(default_factory=list)
    chapters: List[ChapterRef] = Field(default_factory=list)


class ChapterPage(BaseModel):
    page: int
    img: str
    # request headers the image host expects (usually a Referer)
    headers: Dict[str, str] = Field(default_factory=dict)

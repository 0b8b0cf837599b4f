"""
Pydantic schemas for timetable data and API responses
Field aliases follow the Mini-App's camelCase JSON contract
"""
from pydantic import BaseModel, Field
from typing import Optional, List


class ApiModel(BaseModel):
    """Base schema: accepts field names or aliases, dumps aliases"""

    class Config:
        populate_by_name = True

    def to_dict(self) -> dict:
        """Convert to a JSON-ready dict (what the cache stores)."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ===== FACULTY / COURSE SCHEMAS =====

class Faculty(ApiModel):
    slug: str
    name: str
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    def to_dict(self) -> dict:
        # imageUrl is part of the contract even when absent
        return self.model_dump(by_alias=True)


class Group(ApiModel):
    slug: str
    name: str


class Course(ApiModel):
    number: int
    name: str
    groups: List[Group]


# ===== SCHEDULE SCHEMAS =====

class ResourceLink(ApiModel):
    label: str
    url: str


class SpecialDay(ApiModel):
    """Holiday, vacation or practice marker on a day without lessons"""
    type: str
    name: str


class Lesson(ApiModel):
    id: str
    time: str
    time_end: str = Field(alias="timeEnd")
    subject: str
    type: str
    room: str
    room_links: Optional[List[ResourceLink]] = Field(default=None, alias="roomLinks")
    instructor: str
    instructor_links: Optional[List[ResourceLink]] = Field(default=None, alias="instructorLinks")
    date: Optional[str] = None
    joint_groups: Optional[List[str]] = Field(default=None, alias="jointGroups")
    group_links: Optional[List[ResourceLink]] = Field(default=None, alias="groupLinks")
    joint_group_links: Optional[List[ResourceLink]] = Field(default=None, alias="jointGroupLinks")
    resource_links: Optional[List[ResourceLink]] = Field(default=None, alias="resourceLinks")
    notes: Optional[List[str]] = None


class DaySchedule(ApiModel):
    day_name: str = Field(alias="dayName")
    day_index: int = Field(alias="dayIndex")
    lessons: List[Lesson] = Field(default_factory=list)
    special_day: Optional[SpecialDay] = Field(default=None, alias="specialDay")


class WeekSchedule(ApiModel):
    week_type: str = Field(alias="weekType")
    days: List[DaySchedule]


# ===== RESPONSE SCHEMAS =====

class CleanupResult(BaseModel):
    ok: bool
    deleted: int

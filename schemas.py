from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import TaskStatus


class ApiModel(BaseModel):
    """Base for HTTP payloads: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class LoginRequest(ApiModel):
    """JSON body for username/password login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshRequest(ApiModel):
    """Both halves of the pair are required; emptiness is reported by the service."""
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


class TokenResponse(ApiModel):
    token: str
    expiration: datetime
    refresh_token: str
    refresh_token_expiry: datetime


class MessageResponse(ApiModel):
    message: str


class PageInfo(ApiModel):
    current_page: int
    page_size: int
    total_count: int
    total_pages: int


class TaskIn(ApiModel):
    """Fields accepted by Task/Add and Task/Update."""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[datetime] = None


class TaskRead(ApiModel):
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    due_date: Optional[datetime] = None


class TaskWithUserRead(TaskRead):
    user_name: Optional[str] = None


class TaskResponse(ApiModel):
    message: str
    task: TaskRead


class TaskListResponse(ApiModel):
    message: str
    tasks: List[TaskRead]
    page_info: PageInfo


class TaskWithUserListResponse(ApiModel):
    message: str
    tasks: List[TaskWithUserRead]
    page_info: PageInfo


class TaskCountResponse(ApiModel):
    message: str
    count: int


class UserRead(ApiModel):
    id: int
    # wire name, field name, ORM attribute
    user_name: str = Field(validation_alias=AliasChoices("userName", "user_name", "username"))
    email: str
    phone_number: Optional[str] = None
    country: Optional[str] = None
    image_path: Optional[str] = None
    role: List[str] = Field(default_factory=list, validation_alias=AliasChoices("role", "roles"))


class UserListResponse(ApiModel):
    message: str
    users: List[UserRead]
    page_info: PageInfo


class UserProfileResponse(ApiModel):
    message: str
    user: UserRead


class RoleResponse(ApiModel):
    message: str
    role: List[str]

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

import crud
from auth import get_current_user
from authz import Decision, authorize_route, decide
from cache import ResponseCache, cache_key, invalidate_tasks, invalidate_users
from config import Settings, get_settings
from db import get_db
from errors import AuthenticationError, NotFoundError, ValidationError
from identity import IdentityStore
from images import check_image, save_image
from models import Task
from pagination import PageResult, clamp_page_params
from schemas import (
    LoginRequest,
    MessageResponse,
    PageInfo,
    RefreshRequest,
    RoleResponse,
    TaskCountResponse,
    TaskIn,
    TaskListResponse,
    TaskRead,
    TaskResponse,
    TaskWithUserListResponse,
    TaskWithUserRead,
    TokenResponse,
    UserListResponse,
    UserProfileResponse,
    UserRead,
)
from sessions import AuthSessionService, TokenPair

logger = logging.getLogger(__name__)

# One router per resource so OpenAPI groups endpoints by tag. Task and User
# routers pass every request through the role table in authz.ROUTE_ROLES.
account_router = APIRouter(prefix="/api/Account", tags=["Account"])
task_router = APIRouter(prefix="/api/Task", tags=["Task"], dependencies=[Depends(authorize_route)])
user_router = APIRouter(prefix="/api/User", tags=["User"], dependencies=[Depends(authorize_route)])
health_router = APIRouter(tags=["Health"])

# Combined router exported to main.py
router = APIRouter()


def get_cache(request: Request) -> ResponseCache:
    return request.app.state.cache


def client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def page_limits(settings: Settings) -> dict:
    return {"default_page_size": settings.default_page_size, "max_page_size": settings.max_page_size}


def page_info(page: PageResult) -> PageInfo:
    return PageInfo(
        current_page=page.current_page,
        page_size=page.page_size,
        total_count=page.total_count,
        total_pages=page.total_pages,
    )


def set_pagination_header(response: Response, info: PageInfo) -> None:
    response.headers["X-Pagination"] = json.dumps({
        "totalCount": info.total_count,
        "pageSize": info.page_size,
        "currentPage": info.current_page,
        "totalPages": info.total_pages,
    })


def token_response(pair: TokenPair) -> TokenResponse:
    return TokenResponse(
        token=pair.access_token,
        expiration=pair.access_token_expiry,
        refresh_token=pair.refresh_token,
        refresh_token_expiry=pair.refresh_token_expiry,
    )


async def load_owned_task(db: AsyncSession, task_id: int, current_user, action: str) -> Task:
    """Fetch a task the caller may touch; foreign and missing tasks look the same (404)."""
    task = await crud.get_task_by_id(db, task_id)
    if task is None or decide(current_user["roles"], current_user["id"], task.user_id) is Decision.DENY:
        raise NotFoundError(f"Task with ID {task_id} not found or you don't have permission to {action} it.")
    return task


# --- account ---------------------------------------------------------------

@account_router.post("/Register", response_model=MessageResponse)
async def register(
    username: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    country: str = Form(...),
    phone_number: Optional[str] = Form(None, alias="phoneNumber"),
    image: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: ResponseCache = Depends(get_cache),
):
    """Register a new account with the User role."""
    identity = IdentityStore(db)
    check_image(image)
    await identity.create_user(username=username, email=email, password=password, country=country,
                               phone_number=phone_number, image_path=None)
    image_path = save_image(image, settings.images_dir)
    if image_path:
        user = await identity.find_by_username(username)
        user.image_path = image_path
        await crud.save_user(db, user)
    cache.invalidate_prefix("users:")
    return MessageResponse(message="User registered successfully.")


@account_router.post("/Login", response_model=TokenResponse)
async def login(payload: LoginRequest, request: Request, db: AsyncSession = Depends(get_db),
                settings: Settings = Depends(get_settings)):
    """Authenticate and return an access token plus a refresh token."""
    service = AuthSessionService(db, settings.policy)
    pair = await service.login(payload.username, payload.password, client_ip(request))
    return token_response(pair)


@account_router.post("/Refresh", response_model=TokenResponse)
async def refresh(payload: RefreshRequest, request: Request, db: AsyncSession = Depends(get_db),
                  settings: Settings = Depends(get_settings)):
    """Exchange an (expired) access token and the current refresh token for a new pair.

    The presented refresh token is replaced and cannot be used again.
    """
    service = AuthSessionService(db, settings.policy)
    pair = await service.refresh(payload.access_token, payload.refresh_token, client_ip(request))
    return token_response(pair)


# --- tasks -----------------------------------------------------------------

@task_router.get("/GetAllTasks", response_model=TaskWithUserListResponse)
async def get_all_tasks(
    response: Response,
    page_number: Optional[int] = Query(None, alias="pageNumber"),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: ResponseCache = Depends(get_cache),
):
    """Every task in the system with its owner's username (admins only)."""
    page_number, page_size = clamp_page_params(page_number, page_size, **page_limits(settings))

    async def compute():
        page = await crud.list_tasks_page(db, page_number, page_size, include_owner=True,
                                          **page_limits(settings))
        tasks = [
            TaskWithUserRead(
                id=t.id, title=t.title, description=t.description, status=t.status,
                due_date=t.due_date, user_name=t.owner.username if t.owner else None,
            )
            for t in page.items
        ]
        message = "Tasks retrieved successfully." if tasks else "No tasks found."
        return TaskWithUserListResponse(message=message, tasks=tasks, page_info=page_info(page))

    key = cache_key("tasks:all", "*", page_number, page_size)
    result = await cache.get_or_compute(key, compute)
    set_pagination_header(response, result.page_info)
    return result


@task_router.get("/MyTasks", response_model=TaskListResponse)
async def get_my_tasks(
    response: Response,
    page_number: Optional[int] = Query(None, alias="pageNumber"),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: ResponseCache = Depends(get_cache),
):
    """The caller's own tasks, paged."""
    user_id = current_user["id"]
    if not await crud.user_exists(db, user_id):
        logger.warning("MyTasks: user %s not found", user_id)
        raise NotFoundError("User not found.")
    page_number, page_size = clamp_page_params(page_number, page_size, **page_limits(settings))

    async def compute():
        page = await crud.list_tasks_page(db, page_number, page_size, owner_id=user_id, **page_limits(settings))
        tasks = [TaskRead.model_validate(t) for t in page.items]
        message = "Tasks retrieved successfully." if tasks else "No tasks found for this user."
        return TaskListResponse(message=message, tasks=tasks, page_info=page_info(page))

    key = cache_key("tasks:user", user_id, page_number, page_size)
    result = await cache.get_or_compute(key, compute)
    set_pagination_header(response, result.page_info)
    return result


@task_router.get("/SpecificTask/{id}", response_model=TaskResponse)
async def get_task_by_id(id: int, current_user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    task = await load_owned_task(db, id, current_user, "access")
    logger.info("Task %s retrieved for user %s", id, current_user["id"])
    return TaskResponse(message="Task retrieved successfully.", task=TaskRead.model_validate(task))


@task_router.post("/Add", response_model=TaskResponse, status_code=201)
async def add_task(
    payload: TaskIn,
    request: Request,
    response: Response,
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    """Create a task owned by the caller."""
    user_id = current_user["id"]
    if not await crud.user_exists(db, user_id):
        raise NotFoundError("User not found.")
    task = Task(
        title=payload.title,
        description=payload.description,
        status=payload.status,
        due_date=payload.due_date,
        user_id=user_id,
    )
    task = await crud.create_task(db, task)
    invalidate_tasks(cache, user_id)
    logger.info("Task %s created by user %s", task.id, user_id)
    response.headers["Location"] = str(request.url_for("get_task_by_id", id=task.id))
    return TaskResponse(message="Task created successfully.", task=TaskRead.model_validate(task))


@task_router.put("/Update/{id}", response_model=TaskResponse)
async def update_task(
    id: int,
    payload: TaskIn,
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    task = await load_owned_task(db, id, current_user, "update")
    task.title = payload.title
    task.description = payload.description
    task.status = payload.status
    task.due_date = payload.due_date
    task = await crud.save_task(db, task)
    invalidate_tasks(cache, task.user_id)
    logger.info("Task %s updated by user %s", id, current_user["id"])
    return TaskResponse(message="Task updated successfully.", task=TaskRead.model_validate(task))


@task_router.delete("/Delete/{taskId}", response_model=MessageResponse)
async def delete_task(
    taskId: int,
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    task_id = taskId
    task = await load_owned_task(db, task_id, current_user, "delete")
    owner_id = task.user_id
    await crud.delete_task(db, task)
    invalidate_tasks(cache, owner_id)
    logger.info("Task %s deleted by user %s", task_id, current_user["id"])
    return MessageResponse(message=f"Task with ID {task_id} deleted successfully.")


@task_router.get("/Count", response_model=TaskCountResponse)
async def get_task_count(current_user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    count = await crud.count_user_tasks(db, current_user["id"])
    return TaskCountResponse(message="Task count retrieved successfully.", count=count)


# --- users -----------------------------------------------------------------

async def _current_user_row(db: AsyncSession, current_user):
    user = await crud.get_user_by_id(db, current_user["id"])
    if user is None:
        raise AuthenticationError("User ID could not be determined from the token.")
    return user


@user_router.get("/GetRole", response_model=RoleResponse)
async def get_role(current_user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    user = await _current_user_row(db, current_user)
    roles = await IdentityStore(db).get_roles(user)
    return RoleResponse(message="User retrieved successfully.", role=roles)


@user_router.get("/UserProfile", response_model=UserProfileResponse)
async def user_profile(current_user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    user = await _current_user_row(db, current_user)
    return UserProfileResponse(message="User retrieved successfully.", user=UserRead.model_validate(user))


@user_router.get("/GetAllUsers", response_model=UserListResponse)
async def get_all_users(
    response: Response,
    page_number: Optional[int] = Query(None, alias="pageNumber"),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: ResponseCache = Depends(get_cache),
):
    """All users with their roles (admins only)."""
    page_number, page_size = clamp_page_params(page_number, page_size, **page_limits(settings))

    async def compute():
        page = await IdentityStore(db).list_users(page_number, page_size, **page_limits(settings))
        users = [UserRead.model_validate(u) for u in page.items]
        message = "Users retrieved successfully." if users else "No users found."
        return UserListResponse(message=message, users=users, page_info=page_info(page))

    key = cache_key("users:all", "*", page_number, page_size)
    result = await cache.get_or_compute(key, compute)
    set_pagination_header(response, result.page_info)
    return result


@user_router.put("/Update", response_model=MessageResponse)
async def update_user(
    username: str = Form(...),
    email: str = Form(...),
    country: str = Form(...),
    phone_number: Optional[str] = Form(None, alias="phoneNumber"),
    image: Optional[UploadFile] = File(None),
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: ResponseCache = Depends(get_cache),
):
    """Edit the caller's own profile."""
    check_image(image)
    try:
        user = await IdentityStore(db).update_profile(current_user["id"], username=username, email=email,
                                                      country=country, phone_number=phone_number)
    except NotFoundError as exc:
        raise ValidationError("Update failed.", [exc.message])
    image_path = save_image(image, settings.images_dir)
    if image_path:
        user.image_path = image_path
        await crud.save_user(db, user)
    invalidate_users(cache)
    logger.info("User %s updated", current_user["id"])
    return MessageResponse(message="User updated successfully.")


@user_router.delete("/Delete", response_model=MessageResponse)
async def delete_me(
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    """Delete the caller's own account, with its tasks and refresh token."""
    try:
        await IdentityStore(db).delete_user(current_user["id"])
    except NotFoundError as exc:
        raise ValidationError("Delete failed.", [exc.message])
    invalidate_users(cache)
    return MessageResponse(message="User deleted successfully.")


@user_router.delete("/AdminDelete/{userId}", response_model=MessageResponse)
async def admin_delete_user(
    userId: int,
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: ResponseCache = Depends(get_cache),
):
    user_id = userId
    try:
        await IdentityStore(db).delete_user(user_id)
    except NotFoundError as exc:
        raise ValidationError(f"Failed to delete user with ID {user_id}.", [exc.message])
    invalidate_users(cache)
    logger.info("Admin %s deleted user %s", current_user["id"], user_id)
    return MessageResponse(message=f"User with ID {user_id} deleted successfully by admin.")


@health_router.get("/healthz")
async def healthz():
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(account_router)
router.include_router(task_router)
router.include_router(user_router)
router.include_router(health_router)

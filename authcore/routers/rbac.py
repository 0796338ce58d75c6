"""Role, section, and permission management routes."""

from collections.abc import Callable
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from authcore.dependencies import get_database_session, require_operation
from authcore.error_handlers import service_error_response
from authcore.models.role import Role
from authcore.schemas.rbac import (
    CatalogItemResponse,
    CatalogNameRequest,
    CatalogPageResponse,
    RoleCreateRequest,
    RoleGrantResponse,
    RolePageResponse,
    RoleResponse,
    RoleUpdateRequest,
    SectionGrantPayload,
)
from authcore.services.auth_service import AuthenticatedPrincipal
from authcore.services.catalog_service import (
    CatalogService,
    CatalogServiceError,
    get_permission_service,
    get_section_service,
)
from authcore.services.role_service import (
    RoleService,
    RoleServiceError,
    SectionGrant,
    get_role_service,
)

router = APIRouter(tags=["rbac"])

Limit = Annotated[int, Query(ge=1, le=100)]
Offset = Annotated[int, Query(ge=0)]
Search = Annotated[str | None, Query(max_length=128)]


def _grants(payload: list[SectionGrantPayload]) -> list[SectionGrant]:
    return [
        SectionGrant(section=item.section.strip(), permissions=tuple(item.section_permission))
        for item in payload
    ]


def _role_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        role_name=role.role_name,
        created_at=role.created_at,
        grants=[
            RoleGrantResponse(
                section=grant.section.section_name,
                permission=grant.permission.permission_name,
            )
            for grant in role.section_permissions
        ],
    )


@router.post("/roles", response_model=RoleResponse, status_code=201)
async def create_role(
    payload: RoleCreateRequest,
    request: Request,
    _: Annotated[AuthenticatedPrincipal, Depends(require_operation("roles.create"))],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    role_service: Annotated[RoleService, Depends(get_role_service)],
) -> RoleResponse | JSONResponse:
    """Create a role with its section permissions."""
    try:
        role = await role_service.create_role(
            db_session=db_session,
            role_name=payload.role_name,
            grants=_grants(payload.permissions),
        )
    except RoleServiceError as exc:
        return service_error_response(request, exc)
    return _role_response(role)


@router.get("/roles", response_model=RolePageResponse)
async def list_roles(
    _: Annotated[AuthenticatedPrincipal, Depends(require_operation("roles.view"))],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    role_service: Annotated[RoleService, Depends(get_role_service)],
    limit: Limit = 10,
    offset: Offset = 0,
    search: Search = None,
) -> RolePageResponse:
    """List live roles."""
    page = await role_service.list_roles(
        db_session=db_session,
        limit=limit,
        offset=offset,
        search=search,
    )
    return RolePageResponse(
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        data=[_role_response(role) for role in page.data],
    )


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: UUID,
    request: Request,
    _: Annotated[AuthenticatedPrincipal, Depends(require_operation("roles.view"))],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    role_service: Annotated[RoleService, Depends(get_role_service)],
) -> RoleResponse | JSONResponse:
    """Fetch one role with its live grants."""
    try:
        role = await role_service.get_role(db_session=db_session, role_id=role_id)
    except RoleServiceError as exc:
        return service_error_response(request, exc)
    return _role_response(role)


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: UUID,
    payload: RoleUpdateRequest,
    request: Request,
    _: Annotated[AuthenticatedPrincipal, Depends(require_operation("roles.update"))],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    role_service: Annotated[RoleService, Depends(get_role_service)],
) -> RoleResponse | JSONResponse:
    """Replace a role's grants."""
    try:
        role = await role_service.update_role(
            db_session=db_session,
            role_id=role_id,
            grants=_grants(payload.permissions),
            role_name=payload.role_name,
        )
    except RoleServiceError as exc:
        return service_error_response(request, exc)
    return _role_response(role)


@router.delete("/roles/{role_id}", response_model=None)
async def remove_role(
    role_id: UUID,
    request: Request,
    _: Annotated[AuthenticatedPrincipal, Depends(require_operation("roles.delete"))],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    role_service: Annotated[RoleService, Depends(get_role_service)],
) -> Response | JSONResponse:
    """Soft-delete a role and its grants."""
    try:
        await role_service.remove_role(db_session=db_session, role_id=role_id)
    except RoleServiceError as exc:
        return service_error_response(request, exc)
    return Response(status_code=204)


def _catalog_item(item: Any, name_field: str) -> CatalogItemResponse:
    return CatalogItemResponse(
        id=item.id,
        name=getattr(item, name_field),
        created_at=item.created_at,
    )


def _register_catalog_routes(
    resource: str,
    name_field: str,
    service_dependency: Callable[[], CatalogService[Any]],
) -> None:
    """Attach create/list/get/rename/delete routes for a named catalog."""
    collection_path = f"/{resource}"
    item_path = f"/{resource}/{{item_id}}"
    Service = Annotated[CatalogService[Any], Depends(service_dependency)]

    @router.post(
        collection_path,
        response_model=CatalogItemResponse,
        status_code=201,
        name=f"create_{resource}",
    )
    async def create_item(
        payload: CatalogNameRequest,
        request: Request,
        _: Annotated[AuthenticatedPrincipal, Depends(require_operation(f"{resource}.create"))],
        db_session: Annotated[AsyncSession, Depends(get_database_session)],
        service: Service,
    ) -> CatalogItemResponse | JSONResponse:
        try:
            item = await service.create(db_session=db_session, name=payload.name)
        except CatalogServiceError as exc:
            return service_error_response(request, exc)
        return _catalog_item(item, name_field)

    @router.get(collection_path, response_model=CatalogPageResponse, name=f"list_{resource}")
    async def list_items(
        _: Annotated[AuthenticatedPrincipal, Depends(require_operation(f"{resource}.view"))],
        db_session: Annotated[AsyncSession, Depends(get_database_session)],
        service: Service,
        limit: Limit = 10,
        offset: Offset = 0,
        search: Search = None,
    ) -> CatalogPageResponse:
        page = await service.list_items(
            db_session=db_session,
            limit=limit,
            offset=offset,
            search=search,
        )
        return CatalogPageResponse(
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            data=[_catalog_item(item, name_field) for item in page.data],
        )

    @router.get(item_path, response_model=CatalogItemResponse, name=f"get_{resource}")
    async def get_item(
        item_id: UUID,
        request: Request,
        _: Annotated[AuthenticatedPrincipal, Depends(require_operation(f"{resource}.view"))],
        db_session: Annotated[AsyncSession, Depends(get_database_session)],
        service: Service,
    ) -> CatalogItemResponse | JSONResponse:
        try:
            item = await service.get(db_session=db_session, item_id=item_id)
        except CatalogServiceError as exc:
            return service_error_response(request, exc)
        return _catalog_item(item, name_field)

    @router.put(item_path, response_model=CatalogItemResponse, name=f"rename_{resource}")
    async def rename_item(
        item_id: UUID,
        payload: CatalogNameRequest,
        request: Request,
        _: Annotated[AuthenticatedPrincipal, Depends(require_operation(f"{resource}.update"))],
        db_session: Annotated[AsyncSession, Depends(get_database_session)],
        service: Service,
    ) -> CatalogItemResponse | JSONResponse:
        try:
            item = await service.rename(db_session=db_session, item_id=item_id, name=payload.name)
        except CatalogServiceError as exc:
            return service_error_response(request, exc)
        return _catalog_item(item, name_field)

    @router.delete(item_path, response_model=None, name=f"delete_{resource}")
    async def delete_item(
        item_id: UUID,
        request: Request,
        _: Annotated[AuthenticatedPrincipal, Depends(require_operation(f"{resource}.delete"))],
        db_session: Annotated[AsyncSession, Depends(get_database_session)],
        service: Service,
    ) -> Response | JSONResponse:
        try:
            await service.remove(db_session=db_session, item_id=item_id)
        except CatalogServiceError as exc:
            return service_error_response(request, exc)
        return Response(status_code=204)


_register_catalog_routes("sections", "section_name", get_section_service)
_register_catalog_routes("permissions", "permission_name", get_permission_service)

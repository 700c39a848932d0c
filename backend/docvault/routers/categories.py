from fastapi import APIRouter, Depends

from docvault.dependencies import Services, get_services, require_admin, require_caller
from docvault.errors import CategoryNotFound
from docvault.models.category import Category
from docvault.schemas.category import CategoryCreate, CategoryResponse, CategoryUpdate

router = APIRouter(
    prefix="/categories",
    tags=["categories"],
    dependencies=[Depends(require_caller)],
)


def _category_to_response(category: Category, count: int) -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        name=category.name,
        description=category.description,
        document_count=count,
        created_at=category.created_at,
        updated_at=category.updated_at,
    )


@router.get("", response_model=list[CategoryResponse])
async def list_categories(services: Services = Depends(get_services)):
    return [_category_to_response(c, n) for c, n in services.repository.list_categories()]


@router.post("", response_model=CategoryResponse, status_code=201, dependencies=[Depends(require_admin)])
async def create_category(req: CategoryCreate, services: Services = Depends(get_services)):
    category = services.repository.create_category(req.name, req.description)
    return _category_to_response(category, 0)


@router.get("/{category_id}", response_model=CategoryResponse)
async def get_category(category_id: str, services: Services = Depends(get_services)):
    category = services.repository.get_category(category_id)
    if category is None:
        raise CategoryNotFound("Category not found")
    return _category_to_response(category, services.repository.category_document_count(category_id))


@router.put("/{category_id}", response_model=CategoryResponse, dependencies=[Depends(require_admin)])
async def update_category(category_id: str, req: CategoryUpdate, services: Services = Depends(get_services)):
    category = services.repository.update_category(category_id, name=req.name, description=req.description)
    return _category_to_response(category, services.repository.category_document_count(category_id))


@router.delete("/{category_id}", dependencies=[Depends(require_admin)])
async def delete_category(category_id: str, services: Services = Depends(get_services)):
    services.repository.delete_category(category_id)
    return {"status": "deleted"}

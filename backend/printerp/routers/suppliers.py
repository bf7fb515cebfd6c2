"""Supplier management router.

Endpoints:
    GET    /api/suppliers/               List all suppliers
    GET    /api/suppliers/search?q=      Search by name, contact person or email
    POST   /api/suppliers/               Create supplier
    GET    /api/suppliers/{id}           Get one supplier
    PUT    /api/suppliers/{id}           Replace a supplier
    DELETE /api/suppliers/{id}           Delete a supplier
"""

from fastapi import APIRouter, Depends, Query, Response, status

from printerp.auth.deps import get_current_user
from printerp.dependencies import get_supplier_service
from printerp.schemas.auth import UserProfile
from printerp.schemas.supplier import Supplier, SupplierData
from printerp.services.suppliers import SupplierService

router = APIRouter()


@router.get("/", response_model=list[Supplier])
async def list_suppliers(
    service: SupplierService = Depends(get_supplier_service),
    _user: UserProfile = Depends(get_current_user),
):
    return await service.list_suppliers()


@router.get("/search", response_model=list[Supplier])
async def search_suppliers(
    q: str = Query("", max_length=200),
    service: SupplierService = Depends(get_supplier_service),
    _user: UserProfile = Depends(get_current_user),
):
    """Case-insensitive substring match; an empty query lists everything."""
    return await service.search_suppliers(q)


@router.post("/", response_model=Supplier, status_code=201)
async def create_supplier(
    body: SupplierData,
    service: SupplierService = Depends(get_supplier_service),
    _user: UserProfile = Depends(get_current_user),
):
    return await service.create_supplier(body)


@router.get("/{supplier_id}", response_model=Supplier)
async def get_supplier(
    supplier_id: int,
    service: SupplierService = Depends(get_supplier_service),
    _user: UserProfile = Depends(get_current_user),
):
    return await service.get_supplier(supplier_id)


@router.put("/{supplier_id}", response_model=Supplier)
async def update_supplier(
    supplier_id: int,
    body: SupplierData,
    service: SupplierService = Depends(get_supplier_service),
    _user: UserProfile = Depends(get_current_user),
):
    return await service.update_supplier(supplier_id, body)


@router.delete("/{supplier_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_supplier(
    supplier_id: int,
    service: SupplierService = Depends(get_supplier_service),
    _user: UserProfile = Depends(get_current_user),
):
    await service.delete_supplier(supplier_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

"""
Services Package
================

Available services:
- CrudService: create/read/update/delete per entity/DTO pair
"""

from schemarepo.services.crud import CrudService, get_crud_service

__all__ = [
    "CrudService",
    "get_crud_service",
]

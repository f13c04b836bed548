from fastapi import Request

from endpoint_cache.services.api_service import ApiService
from endpoint_cache.storage import SqlStorage


def get_api_service(request: Request) -> ApiService:
    return request.app.state.api_service


def get_storage(request: Request) -> SqlStorage:
    return request.app.state.storage

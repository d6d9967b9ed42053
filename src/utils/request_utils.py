from fastapi import Request
from fastapi.exceptions import HTTPException

TENANT_HEADER = "x-tenant-id"


def get_tenant_id(request: Request) -> str:
    """
    Tenant id of the caller. Authentication happens upstream, the header is trusted.
    """
    tenant_id = request.headers.get(TENANT_HEADER)
    if tenant_id is None or not tenant_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return tenant_id.strip()

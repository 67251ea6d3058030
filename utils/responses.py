from typing import Dict, Optional
from fastapi.responses import JSONResponse


def success_response(data: dict, status=200, headers: Optional[Dict[str, str]] = None):
    return JSONResponse(status_code=status, content=data, headers=headers)


def error_response(error: str, status=400, headers: Optional[Dict[str, str]] = None, **extra):
    return JSONResponse(
        status_code=status,
        content={**extra, "error": error},
        headers=headers,
    )

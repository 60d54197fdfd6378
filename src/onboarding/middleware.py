# onboarding/middleware.py

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Extractors only copy credentials from headers into request.state; they
# never touch the database. Verification happens in the dependencies.
def _extract_bearer_token(request: Request) -> None:
    token = request.headers.get('Authorization')
    if token and token.startswith("Bearer "):
        setattr(request.state, "token", token[len("Bearer "):].strip() or None)

def _extract_shop_code(request: Request) -> None:
    shop_code = request.headers.get('X-Shop-Code')
    if shop_code:
        setattr(request.state, "shop_code", shop_code.strip())

def _extract_tenant_id(request: Request) -> None:
    tenant_id = request.headers.get('X-Tenant-Id')
    if tenant_id:
        setattr(request.state, "tenant_id", tenant_id.strip())

class AuthenticationMiddleware(BaseHTTPMiddleware):
    AUTH_EXTRACTORS = [
        _extract_bearer_token,
        _extract_shop_code,
        _extract_tenant_id,
    ]

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # reset per request
        setattr(request.state, "token", None)
        setattr(request.state, "shop_code", None)
        setattr(request.state, "tenant_id", None)

        for extractor in self.AUTH_EXTRACTORS:
            extractor(request)

        response = await call_next(request)
        return response

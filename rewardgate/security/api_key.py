import secrets

from fastapi import Header, HTTPException, Request


def require_admin_api_key(request: Request, x_api_key: str | None = Header(default=None, alias="X-API-Key")):
    expected = request.app.state.ctx.settings.ADMIN_API_KEY
    # an empty configured key disables the admin surface entirely
    if not expected or not x_api_key or not secrets.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True

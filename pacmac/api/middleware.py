import os

from fastapi import Request, status
from fastapi.responses import JSONResponse
from firebase_admin import _apps, auth, credentials, initialize_app

from pacmac.core.logging import get_logger

logger = get_logger(__name__)

firebase_app = None


def init_firebase():
    global firebase_app
    if not _apps and os.getenv("TESTING") != "1":
        cred = credentials.Certificate(
            os.getenv("FIREBASE_CREDENTIALS", "pacmac-service-account.json")
        )
        firebase_app = initialize_app(cred)


async def authenticate_request(request: Request, call_next):
    if request.url.path.startswith(("/docs", "/openapi.json", "/redoc")):
        return await call_next(request)

    auth_header = request.headers.get("Authorization")

    if not auth_header:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Authorization header is missing"},
        )

    token = auth_header.split(" ")[1] if " " in auth_header else None
    if not token:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": "Invalid or missing authentication token"},
        )

    # tests override the user dependency instead
    if os.getenv("TESTING") == "1":
        return await call_next(request)

    try:
        user = auth.verify_id_token(token, firebase_app)
    except (ValueError, auth.InvalidIdTokenError, auth.CertificateFetchError) as e:
        logger.warning("Rejected request to %s: %s", request.url.path, e)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": f"{e}"},
        )

    request.state.user = user
    return await call_next(request)

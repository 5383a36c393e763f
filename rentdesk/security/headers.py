from fastapi import FastAPI, Request
from starlette.responses import Response


ROBOTS_HEADER = "noindex, nofollow, noarchive"
NO_STORE_PREFIXES = ("/auth/", "/orders/draft", "/customers/")

STATIC_HEADERS = {
    "X-Robots-Tag": ROBOTS_HEADER,
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "same-origin",
    "X-Frame-Options": "DENY",
}


def install_security_headers(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in STATIC_HEADERS.items():
            response.headers[name] = value
        # Customer KYC details and session responses must not be cached by the browser.
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        return response

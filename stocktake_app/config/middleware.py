from typing import Optional

from django.conf import settings
from django.http import HttpResponse


def _token_from_request(request) -> Optional[str]:
    auth = request.headers.get("Authorization")
    if auth:
        parts = auth.strip().split()
        if len(parts) == 2 and parts[0].lower() in {"bearer", "token"}:
            return parts[1]
    return request.headers.get("X-API-Token") or request.COOKIES.get("api_token")


class StaticTokenMiddleware:
    """
    Enforce a shared token on API routes when API_STATIC_TOKEN is set.

    Accepted locations:
      - Header: Authorization: Bearer <token> or Token <token>
      - Header: X-API-Token: <token>
      - Cookie: api_token=<token>

    Signed photo links under <prefix>photos/ carry their own signature and are
    let through so they can be opened directly in a browser.
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.prefix = getattr(settings, "API_PATH_PREFIX", "/api/")

    def __call__(self, request):
        token = getattr(settings, "API_STATIC_TOKEN", "") or ""
        path = request.path
        if not token or not path.startswith(self.prefix) or path.startswith(self.prefix + "photos/"):
            return self.get_response(request)

        if _token_from_request(request) != token:
            resp = HttpResponse("Unauthorized: invalid or missing API token", status=401)
            resp["WWW-Authenticate"] = "Bearer"
            return resp

        return self.get_response(request)


class ActorMiddleware:
    """
    Attach the acting counter/reviewer id to the request as `request.actor_id`.

    Identity comes from the upstream gateway in the ACTOR_HEADER header
    (default X-Actor-Id); an empty string means anonymous.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        header = getattr(settings, "ACTOR_HEADER", "X-Actor-Id")
        request.actor_id = (request.headers.get(header) or "").strip()[:64]
        return self.get_response(request)

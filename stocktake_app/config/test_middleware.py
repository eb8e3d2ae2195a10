from django.http import HttpResponse
from django.test import SimpleTestCase, override_settings
from django.test.client import RequestFactory

from .middleware import ActorMiddleware, StaticTokenMiddleware


def _ok(_request):
    return HttpResponse("ok")


class MiddlewareTests(SimpleTestCase):
    def setUp(self):
        self.factory = RequestFactory()

    @override_settings(API_STATIC_TOKEN="secret")
    def test_static_token_middleware_blocks_missing_token(self):
        mw = StaticTokenMiddleware(_ok)
        resp = mw(self.factory.get("/api/sessions/"))
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp["WWW-Authenticate"], "Bearer")

    @override_settings(API_STATIC_TOKEN="secret")
    def test_static_token_middleware_allows_bearer_token(self):
        mw = StaticTokenMiddleware(_ok)
        resp = mw(self.factory.get("/api/sessions/", HTTP_AUTHORIZATION="Bearer secret"))
        self.assertEqual(resp.status_code, 200)

    @override_settings(API_STATIC_TOKEN="secret")
    def test_static_token_middleware_allows_header_token(self):
        mw = StaticTokenMiddleware(_ok)
        resp = mw(self.factory.get("/api/sessions/", HTTP_X_API_TOKEN="secret"))
        self.assertEqual(resp.status_code, 200)

    @override_settings(API_STATIC_TOKEN="secret")
    def test_signed_photo_links_skip_token_check(self):
        mw = StaticTokenMiddleware(_ok)
        resp = mw(self.factory.get("/api/photos/abc/"))
        self.assertEqual(resp.status_code, 200)

    @override_settings(API_STATIC_TOKEN="secret")
    def test_non_api_paths_are_not_guarded(self):
        mw = StaticTokenMiddleware(_ok)
        resp = mw(self.factory.get("/metrics/"))
        self.assertEqual(resp.status_code, 200)

    def test_actor_middleware_reads_header(self):
        seen = {}

        def get_response(request):
            seen["actor"] = request.actor_id
            return HttpResponse("ok")

        ActorMiddleware(get_response)(self.factory.get("/api/", HTTP_X_ACTOR_ID=" reviewer-7 "))
        self.assertEqual(seen["actor"], "reviewer-7")

    def test_actor_middleware_defaults_to_empty(self):
        seen = {}

        def get_response(request):
            seen["actor"] = request.actor_id
            return HttpResponse("ok")

        ActorMiddleware(get_response)(self.factory.get("/api/"))
        self.assertEqual(seen["actor"], "")

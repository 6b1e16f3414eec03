import pytest


@pytest.fixture(autouse=True)
def _test_settings(settings):
    # Prevent SecurityMiddleware from forcing https://testserver/...
    settings.SECURE_SSL_REDIRECT = False
    settings.SESSION_COOKIE_SECURE = False
    settings.CSRF_COOKIE_SECURE = False
    settings.SECURE_HSTS_SECONDS = 0

    # Tests that need the coarse-only gate override this explicitly.
    settings.WORKFLOW_ENFORCE_STAGE_OWNERSHIP = True

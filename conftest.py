import pytest


@pytest.fixture(autouse=True)
def _lab_test_environment(settings):
    # HTTPS redirects and secure cookies break APIClient requests to testserver
    settings.SECURE_SSL_REDIRECT = False
    settings.SESSION_COOKIE_SECURE = False
    settings.CSRF_COOKIE_SECURE = False

    # Release notifications are opted into per test
    settings.LAB_RELEASE_EMAIL_NOTIFICATIONS = False

    from labs_core.signals import set_current_user

    # Audit attribution must not leak between tests through the thread-local
    set_current_user(None)
    yield
    set_current_user(None)

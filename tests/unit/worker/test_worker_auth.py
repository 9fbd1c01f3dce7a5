"""Worker endpoint authorization."""
from tour_intake.settings import Settings
from tour_intake.worker.auth import is_authorized


def _settings(**kw):
    return Settings(_env_file=None, import_worker_secret="s3cret", **kw)


def test_bearer_secret_accepted():
    assert is_authorized({"authorization": "Bearer s3cret"}, _settings())


def test_wrong_secret_rejected():
    assert not is_authorized({"authorization": "Bearer nope"}, _settings())


def test_missing_header_rejected():
    assert not is_authorized({}, _settings())


def test_empty_secret_never_matches():
    s = Settings(_env_file=None, import_worker_secret="")
    assert not is_authorized({"authorization": "Bearer "}, s)


def test_scheduler_header_only_when_trusted():
    headers = {"X-Scheduled-Invocation": "1"}
    assert not is_authorized(headers, _settings())
    assert is_authorized(headers, _settings(trust_scheduler_header=True))


def test_custom_scheduler_header_name():
    s = _settings(trust_scheduler_header=True, scheduler_header_name="x-vercel-cron")
    assert is_authorized({"x-vercel-cron": "1"}, s)

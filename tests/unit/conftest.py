import pytest


@pytest.fixture(autouse=True)
def clear_function_environment(monkeypatch):
    """
    Automatically removes variables of a surrounding Lambda environment, so function processes started by unit
    tests only see what the tests configure.
    """
    for name in ("AWS_LAMBDA_RUNTIME_API", "AWS_LAMBDA_FUNCTION_NAME", "LAMBDA_ENV_FILE"):
        monkeypatch.delenv(name, raising=False)

import pytest

from config import Config, WorkerSettings, DEFAULT_DATE_FORMAT

SETTING_VARS = [
    "RETRY_TIMES", "POSTS_COUNT", "DATE_FORMAT", "DATE_TIMEZONE", "FEED_TIMEOUT",
    "RETRY_DELAY_BASE", "CONCURRENCY_LIMIT", "USER_AGENT", "GITHUB_TOKEN",
    "GITHUB_REPOSITORY", "GITHUB_API_URL", "ISSUE_STATE", "SECRETS_FILE",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in SETTING_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"INPUT_{name}", raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = Config().worker_settings()

    assert settings == WorkerSettings()
    assert settings.retry_attempts == 3
    assert settings.max_posts_per_feed == 2
    assert settings.date_format == DEFAULT_DATE_FORMAT
    assert settings.concurrency_limit == 10
    assert settings.fetch_timeout == 5.0


def test_action_inputs_are_honoured(clean_env):
    clean_env.setenv("INPUT_RETRY_TIMES", "5")
    clean_env.setenv("INPUT_POSTS_COUNT", "0")
    clean_env.setenv("INPUT_DATE_FORMAT", "YYYY/MM/DD")

    settings = Config().worker_settings()

    assert settings.retry_attempts == 5
    assert settings.max_posts_per_feed == 0
    assert settings.date_format == "YYYY/MM/DD"


def test_plain_variable_wins_over_action_input(clean_env):
    clean_env.setenv("RETRY_TIMES", "2")
    clean_env.setenv("INPUT_RETRY_TIMES", "7")

    assert Config().RETRY_TIMES == 2


def test_blank_action_input_uses_default(clean_env):
    clean_env.setenv("INPUT_POSTS_COUNT", "")

    assert Config().POSTS_COUNT == 2


@pytest.mark.parametrize("name,value,attr,default", [
    ("RETRY_TIMES", "zero", "RETRY_TIMES", 3),
    ("RETRY_TIMES", "0", "RETRY_TIMES", 3),
    ("POSTS_COUNT", "-1", "POSTS_COUNT", 2),
    ("CONCURRENCY_LIMIT", "0", "CONCURRENCY_LIMIT", 10),
    ("FEED_TIMEOUT", "0", "FEED_TIMEOUT", 5.0),
    ("RETRY_DELAY_BASE", "-2", "RETRY_DELAY_BASE", 0.0),
    ("DATE_TIMEZONE", "Mars/Olympus_Mons", "DATE_TIMEZONE", "UTC"),
    ("ISSUE_STATE", "merged", "ISSUE_STATE", "open"),
])
def test_invalid_values_fall_back(clean_env, name, value, attr, default):
    clean_env.setenv(name, value)

    assert getattr(Config(), attr) == default


def test_secrets_file_exports_variables(clean_env, tmp_path):
    secrets = tmp_path / "secrets.yaml"
    secrets.write_text('environment:\n  GITHUB_TOKEN: "secret-token"\n  GITHUB_REPOSITORY: "octo/feeds"\n')
    clean_env.setenv("SECRETS_FILE", str(secrets))
    # Registered with monkeypatch so the exported values are undone afterwards
    clean_env.setenv("GITHUB_TOKEN", "")
    clean_env.setenv("GITHUB_REPOSITORY", "")

    loaded = Config()

    assert loaded.GITHUB_TOKEN == "secret-token"
    assert loaded.GITHUB_REPOSITORY == "octo/feeds"
    assert loaded.get_config_summary()["has_github_token"] is True


def test_missing_secrets_file_is_ignored(clean_env, tmp_path):
    clean_env.setenv("SECRETS_FILE", str(tmp_path / "nope.yaml"))

    assert Config().GITHUB_TOKEN is None


def test_settings_are_immutable(clean_env):
    settings = Config().worker_settings()

    with pytest.raises(AttributeError):
        settings.retry_attempts = 10

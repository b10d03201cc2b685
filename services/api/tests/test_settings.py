from dealflow.settings import DEFAULT_PAYFAST_IPS, Settings


def test_allowed_ips_accept_comma_separated_env(monkeypatch):
    monkeypatch.setenv("PAYFAST_ALLOWED_IPS", "10.0.0.1, 10.0.0.2")
    settings = Settings(_env_file=None)
    assert settings.payfast_allowed_ips == ["10.0.0.1", "10.0.0.2"]


def test_allowed_ips_accept_json_env(monkeypatch):
    monkeypatch.setenv("PAYFAST_ALLOWED_IPS", '["10.0.0.1","10.0.0.2"]')
    settings = Settings(_env_file=None)
    assert settings.payfast_allowed_ips == ["10.0.0.1", "10.0.0.2"]


def test_allowed_ips_default_to_gateway_ranges(monkeypatch):
    monkeypatch.delenv("PAYFAST_ALLOWED_IPS", raising=False)
    settings = Settings(_env_file=None)
    assert settings.payfast_allowed_ips == DEFAULT_PAYFAST_IPS


def test_cors_origins_accept_comma_separated_env(monkeypatch):
    monkeypatch.delenv("CORS_ORIGINS", raising=False)
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example,https://b.example")
    settings = Settings(_env_file=None)
    assert settings.cors_origins == ["https://a.example", "https://b.example"]


def test_gateway_urls_follow_sandbox_flag(monkeypatch):
    monkeypatch.setenv("PAYFAST_SANDBOX", "true")
    monkeypatch.setenv("TRUSTED_PROXY_HOPS", "1")
    settings = Settings(_env_file=None)
    assert settings.payfast_process_url == "https://sandbox.payfast.co.za/eng/process"
    assert settings.payfast_validate_url == "https://sandbox.payfast.co.za/eng/query/validate"
    assert settings.trusted_proxy_hops == 1

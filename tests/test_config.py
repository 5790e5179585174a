from cmpkit.core.config import EngineConfig


def test_defaults_when_env_is_empty(monkeypatch):
    for name in (
        "CMPKIT_STRICT_SPECIALIZATION",
        "CMPKIT_MAX_SPECIALIZATION_HOPS",
        "CMPKIT_EVICT_FAILED_SPECIALIZATIONS",
        "CMPKIT_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    cfg = EngineConfig.from_env()
    assert cfg == EngineConfig()
    assert cfg.strict_specialization is True
    assert cfg.max_specialization_hops == 8


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CMPKIT_STRICT_SPECIALIZATION", "false")
    monkeypatch.setenv("CMPKIT_MAX_SPECIALIZATION_HOPS", "3")
    monkeypatch.setenv("CMPKIT_EVICT_FAILED_SPECIALIZATIONS", "yes")
    monkeypatch.setenv("CMPKIT_LOG_LEVEL", "debug")

    cfg = EngineConfig.from_env()
    assert cfg.strict_specialization is False
    assert cfg.max_specialization_hops == 3
    assert cfg.evict_failed_specializations is True
    assert cfg.log_level == "DEBUG"


def test_invalid_ints_fall_back(monkeypatch):
    monkeypatch.setenv("CMPKIT_MAX_SPECIALIZATION_HOPS", "many")
    assert EngineConfig.from_env().max_specialization_hops == 8

    monkeypatch.setenv("CMPKIT_MAX_SPECIALIZATION_HOPS", "0")
    assert EngineConfig.from_env().max_specialization_hops == 1


def test_payload_overrides_are_tolerant():
    base = EngineConfig()
    assert EngineConfig.from_payload(None, base) is base
    assert EngineConfig.from_payload("strict", base) is base

    cfg = EngineConfig.from_payload(
        {
            "strict_specialization": False,
            "max_specialization_hops": "4",
            "evict_failed_specializations": 1,
            "unknown": True,
        },
        base,
    )
    assert cfg.strict_specialization is False
    assert cfg.max_specialization_hops == 8
    assert cfg.evict_failed_specializations is False

    assert EngineConfig.from_payload({"max_specialization_hops": 2}, base).max_specialization_hops == 2
    assert EngineConfig.from_payload({"max_specialization_hops": True}, base).max_specialization_hops == 8


def test_to_dict():
    assert EngineConfig(strict_specialization=False).to_dict() == {
        "strict_specialization": False,
        "max_specialization_hops": 8,
        "evict_failed_specializations": False,
        "log_level": "WARNING",
    }

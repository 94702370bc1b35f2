from fieldroute.config import Settings


def test_defaults_match_business_hours():
    config = Settings(_env_file=None)

    assert config.day_start == "09:30"
    assert config.day_end == "16:00"
    assert config.working_days == ("MON", "TUE", "WED", "THU", "FRI")
    assert config.max_appointments_per_day == 5
    assert config.max_service_radius_km == 20.0
    assert config.oracle_max_concurrency == 5
    assert config.travel_cache_ttl_seconds == 3600


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("FIELDROUTE_OSRM_BASE_URL", "http://osrm.local:5000")
    monkeypatch.setenv("FIELDROUTE_MAX_APPOINTMENTS_PER_DAY", "6")
    monkeypatch.setenv("FIELDROUTE_WORKING_DAYS", '["mon", "tue"]')

    config = Settings(_env_file=None)

    assert config.osrm_base_url == "http://osrm.local:5000"
    assert config.max_appointments_per_day == 6
    assert config.working_days == ("MON", "TUE")


def test_working_days_accepts_comma_separated_text():
    assert Settings(_env_file=None, working_days="sat,sun").working_days == ("SAT", "SUN")
    assert Settings(_env_file=None, working_days="fri").working_days == ("FRI",)

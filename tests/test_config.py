"""
Tests for environment-driven settings
"""
from pkgdesk.app.config import PickupSettings, Settings


def test_pickup_code_lengths_from_env(monkeypatch):
    monkeypatch.delenv('OTP_LENGTH', raising=False)
    monkeypatch.delenv('HOUSEHOLD_OTP_LENGTH', raising=False)
    defaults = PickupSettings()
    assert (defaults.otp_length, defaults.household_otp_length) == (6, 4)

    monkeypatch.setenv('HOUSEHOLD_OTP_LENGTH', '5')
    assert PickupSettings().household_otp_length == 5


def test_unknown_timezone_falls_back_to_utc():
    settings = Settings(timezone='Mars/Olympus_Mons')
    assert not settings.timezone_known()
    assert settings.zone_name() == 'UTC'
    assert any('TIMEZONE' in issue for issue in settings.validate())


def test_known_timezone_is_kept():
    settings = Settings(timezone='Asia/Taipei')
    assert settings.zone_name() == 'Asia/Taipei'
    assert not any('TIMEZONE' in issue for issue in settings.validate())


def test_desk_reports_in_utc_when_timezone_unknown():
    from pkgdesk.app.api import build_desk
    desk = build_desk(Settings(timezone='Mars/Olympus_Mons', store_backend='sql'))
    assert desk.timezone == 'UTC'

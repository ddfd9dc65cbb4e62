"""Tests for fingerprint/models.py."""

from dbo.fingerprint.models import ArmMatch, Fingerprint, FingerprintType


class TestFingerprint:
    """Tests for Fingerprint serialization and usefulness."""

    def test_to_dict_uses_camel_case(self) -> None:
        fp = Fingerprint(
            type=FingerprintType.CRC64,
            captured_at="2024-01-01T00:00:00+00:00",
            crc64="8a2b48b0fdb13115",
            volume_label="MOVIE",
            arm_match=ArmMatch(title="Movie", year=2001, source="arm"),
        )
        data = fp.to_dict()

        assert data["type"] == "crc64"
        assert data["capturedAt"] == "2024-01-01T00:00:00+00:00"
        assert data["volumeLabel"] == "MOVIE"
        assert data["armMatch"] == {
            "title": "Movie",
            "year": 2001,
            "type": "movie",
            "source": "arm",
            "confidence": 0.99,
        }
        assert data["contentId"] is None

    def test_round_trip(self) -> None:
        fp = Fingerprint(
            type=FingerprintType.DISC_ID,
            disc_id="AB" * 16,
            organization_id="00001234",
            arm_match=ArmMatch(title="X"),
        )
        assert Fingerprint.from_dict(fp.to_dict()) == fp

    def test_from_dict_tolerates_unknown_type(self) -> None:
        fp = Fingerprint.from_dict({"type": "laserdisc", "armMatch": "bogus"})
        assert fp.type is FingerprintType.UNKNOWN
        assert fp.arm_match is None
        assert fp.captured_at

    def test_is_useful(self) -> None:
        assert Fingerprint(type=FingerprintType.CRC64, crc64="ab").is_useful
        assert Fingerprint(
            type=FingerprintType.EMBEDDED_TITLE, embedded_title="T"
        ).is_useful
        assert not Fingerprint(type=FingerprintType.CRC64).is_useful
        assert not Fingerprint(type=FingerprintType.UNKNOWN, crc64="ab").is_useful

    def test_unknown_factory(self) -> None:
        fp = Fingerprint.unknown("boom", volume_label="L")
        assert fp.type is FingerprintType.UNKNOWN
        assert fp.error == "boom"
        assert fp.volume_label == "L"


class TestArmMatch:
    """Tests for ArmMatch.from_dict."""

    def test_accepts_either_type_key(self) -> None:
        match = ArmMatch.from_dict({"title": "S", "type": "series"})
        assert match.media_type == "series"
        assert (
            ArmMatch.from_dict({"title": "S", "media_type": "series"}).media_type
            == "series"
        )

    def test_defaults(self) -> None:
        match = ArmMatch.from_dict({"title": "M"})
        assert match.media_type == "movie"
        assert match.source == "local"
        assert match.confidence == 0.99

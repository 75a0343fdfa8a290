"""Tests for environment-driven settings in vidmeta/config.py."""

import pytest

from vidmeta.config import MetadataField, Settings, ThumbnailSize


class TestThumbnailSize:
    """Tests for the thumbnail size setting."""

    def test_default_is_small(self, monkeypatch):
        monkeypatch.delenv("VIDMETA_THUMBNAIL_SIZE", raising=False)
        assert Settings().thumbnail_size == ThumbnailSize.small

    def test_size_from_env(self, monkeypatch):
        monkeypatch.setenv("VIDMETA_THUMBNAIL_SIZE", "large")
        assert Settings().thumbnail_size == ThumbnailSize.large

    @pytest.mark.parametrize("value", ["", "none", "None", "null"])
    def test_env_value_disables_thumbnail(self, monkeypatch, value):
        """Test that thumbnail selection can be switched off from the environment."""
        monkeypatch.setenv("VIDMETA_THUMBNAIL_SIZE", value)
        assert Settings().thumbnail_size is None

    def test_unknown_size_rejected(self, monkeypatch):
        monkeypatch.setenv("VIDMETA_THUMBNAIL_SIZE", "huge")
        with pytest.raises(ValueError):
            Settings()


class TestMetadataFields:
    """Tests for the fields-to-fetch setting."""

    def test_all_fields_by_default(self, monkeypatch):
        monkeypatch.delenv("VIDMETA_METADATA_FIELDS", raising=False)
        assert Settings().metadata_fields == set(MetadataField)

    def test_fields_from_env_json(self, monkeypatch):
        monkeypatch.setenv("VIDMETA_METADATA_FIELDS", '["caption"]')
        settings = Settings()
        assert settings.wants(MetadataField.caption)
        assert not settings.wants(MetadataField.description)

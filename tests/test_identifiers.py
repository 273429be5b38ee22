"""
Tests for turning user input into app IDs.
"""

from review_radar.identifiers import (
    detect_platform,
    extract_app_ids,
    identifiers_from_messages,
    resolve_identifier,
    resolve_identifiers,
    resolve_path_segments,
)
from review_radar.models import Platform


class TestExtractAppIds:

    def test_vs_separated_package_names(self):
        assert extract_app_ids("com.spotify.music vs com.apple.music") == [
            "com.spotify.music", "com.apple.music",
        ]

    def test_google_play_url(self):
        assert extract_app_ids("https://play.google.com/store/apps/details?id=com.whatsapp") == ["com.whatsapp"]

    def test_app_store_url_with_path_id(self):
        assert extract_app_ids("https://apps.apple.com/us/app/x/id553834731") == ["553834731"]

    def test_app_store_url_with_query_id(self):
        assert extract_app_ids("https://itunes.apple.com/app?id=553834731") == ["553834731"]

    def test_commas_and_versus_mixed(self):
        text = "com.spotify.music, 324684580 versus com.pandora.android"
        assert extract_app_ids(text) == ["com.spotify.music", "324684580", "com.pandora.android"]

    def test_duplicates_removed_keeping_first(self):
        assert extract_app_ids("com.a.b, com.c.d, com.a.b") == ["com.a.b", "com.c.d"]

    def test_vs_inside_a_word_does_not_split(self):
        assert extract_app_ids("com.vsco.cam") == ["com.vsco.cam"]

    def test_empty_input(self):
        assert extract_app_ids("") == []
        assert extract_app_ids("   ") == []

    def test_urls_mixed_with_ids(self):
        text = "https://play.google.com/store/apps/details?id=com.whatsapp&hl=en vs 310633997"
        assert extract_app_ids(text) == ["com.whatsapp", "310633997"]


class TestResolveIdentifier:

    def test_platform_from_id_shape(self):
        assert detect_platform("324684580") == Platform.APP_STORE
        assert detect_platform("com.spotify.music") == Platform.GOOGLE_PLAY
        assert detect_platform("Spotify") == Platform.GOOGLE_PLAY

    def test_bare_id_is_trimmed(self):
        identifier = resolve_identifier("  com.spotify.music ")
        assert identifier.app_id == "com.spotify.music"
        assert identifier.platform == Platform.GOOGLE_PLAY

    def test_app_store_url_platform(self):
        identifier = resolve_identifier("https://apps.apple.com/us/app/spotify/id324684580")
        assert identifier.platform == Platform.APP_STORE

    def test_unknown_host_id_path_segment(self):
        identifier = resolve_identifier("https://example.com/apps/id/com.foo.bar")
        assert identifier.app_id == "com.foo.bar"
        assert identifier.platform == Platform.GOOGLE_PLAY

    def test_unparseable_url_passes_through(self):
        identifier = resolve_identifier("https://example.com/nothing/here")
        assert identifier.app_id == "https://example.com/nothing/here"

    def test_play_url_without_id_passes_through(self):
        url = "https://play.google.com/store/apps"
        assert resolve_identifier(url).app_id == url

    def test_raw_input_is_kept(self):
        identifier = resolve_identifiers("https://play.google.com/store/apps/details?id=com.whatsapp")[0]
        assert identifier.raw_input == "https://play.google.com/store/apps/details?id=com.whatsapp"


class TestConversationIdentifiers:

    def test_only_user_turns_count(self):
        messages = [
            {"role": "user", "content": "com.spotify.music"},
            {"role": "assistant", "content": "com.not.an.app"},
            {"role": "user", "content": "com.pandora.android vs com.spotify.music"},
        ]
        ids = [i.app_id for i in identifiers_from_messages(messages)]
        assert ids == ["com.spotify.music", "com.pandora.android"]

    def test_path_segments(self):
        ids = [i.app_id for i in resolve_path_segments(["com.a.b", "", "123", "com.a.b"])]
        assert ids == ["com.a.b", "123"]

import pytest

from conftest import IMAGE_URL, LARGE_IMAGE_URL, PROFILE_URL, VIDEO_URL
from threads_extractor import (
    is_image_url,
    is_trusted_media_url,
    is_video_url,
    score_image_url,
    unescape_json_url,
)


@pytest.mark.parametrize("url", [
    VIDEO_URL,
    "https://example.com/clip.webm",
    "https://scontent.cdninstagram.com/o1/v/t16/f2/m86/AQN_stream",
    "https://video-lax3-1.xx.fbcdn.net/o1/v/t2/f2/m69/AQM",
    "https://scontent.xx.fbcdn.net/v/t42/video/abc",
    "https://www.threads.net/media/abc",
])
def test_video_candidates_accepted(url):
    assert is_video_url(url)


@pytest.mark.parametrize("url", [
    "",
    "https://video.fbcdn.net/poster.jpg",
    "https://scontent.xx.fbcdn.net/v/t39/abc",
    "https://example.com/clip",
    "blob:https://www.threads.net/5f0c-4d2e",
])
def test_video_candidates_rejected(url):
    assert not is_video_url(url)


def test_image_candidate_accepted():
    assert is_image_url(IMAGE_URL)


@pytest.mark.parametrize("url", [
    "",
    PROFILE_URL,
    "https://scontent.cdninstagram.com/static/logo.png",
    "https://scontent.cdninstagram.com/rsrc/safe_image.php?x.jpg",
    "https://example.com/photo.jpg",
    "https://scontent.cdninstagram.com/v/t51/photo",
    "https://scontent.cdninstagram.com/v/video_thumb.jpg",
])
def test_image_candidates_rejected(url):
    assert not is_image_url(url)


@pytest.mark.parametrize("url", [
    "https://scontent.cdninstagram.com/v/a.mp4",
    "https://video.fbcdn.net/b.webm",
    "https://scontent.cdninstagram.com/v/c.mov",
])
def test_video_suffix_never_an_image(url):
    assert is_video_url(url)
    assert not is_image_url(url)


@pytest.mark.parametrize("url", [IMAGE_URL, LARGE_IMAGE_URL, "https://video.fbcdn.net/d.png"])
def test_image_suffix_never_a_video(url):
    assert not is_video_url(url)


def test_score_rewards_larger_dimensions():
    template = "https://scontent.cdninstagram.com/v/t51/{}/photo.jpg"
    large = score_image_url(template.format("p1080x1080"))
    medium = score_image_url(template.format("p720x720"))
    small = score_image_url(template.format("p640x640"))
    plain = score_image_url(template.format("p100"))
    assert large > medium > small > plain == 50


def test_score_full_resolution_bonus():
    assert score_image_url("https://scontent.cdninstagram.com/v/full_res/photo.jpg") == 75
    assert score_image_url("https://scontent.cdninstagram.com/v/original/1080x1080.jpg") == 125


def test_score_zero_for_non_images():
    assert score_image_url(PROFILE_URL) == 0
    assert score_image_url(VIDEO_URL) == 0


def test_unescape_json_url():
    assert unescape_json_url("https:\\/\\/x.fbcdn.net\\/v.mp4?a=1\\u0026b=2") == (
        "https://x.fbcdn.net/v.mp4?a=1&b=2"
    )


def test_trusted_media_url():
    assert is_trusted_media_url(VIDEO_URL)
    assert is_trusted_media_url(IMAGE_URL)
    assert not is_trusted_media_url("https://example.com/x.mp4")
    assert not is_trusted_media_url("file:///etc/passwd")
    assert not is_trusted_media_url("/relative/x.mp4")


def test_trusted_media_url_matches_whole_domains():
    assert not is_trusted_media_url("https://scontent.evil.example/x.mp4")
    assert not is_trusted_media_url("https://fbcdn.net.evil.example/x.mp4")
    assert not is_trusted_media_url("https://cdninstagram.com@evil.example/x.jpg")

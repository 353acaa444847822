import pytest

from browser import StaticPage
from conftest import IMAGE_URL, VIDEO_URL, make_html
from threads_extractor import ContentClassifier, MediaType


def classify(html: str) -> MediaType:
    return ContentClassifier().classify(StaticPage(html))


@pytest.mark.parametrize("head", [
    f'<meta property="og:video" content="{VIDEO_URL}">',
    '<meta property="og:video:secure_url" content="https://cdn.example.com/clip.mp4?x=1">',
    '<meta property="og:type" content="video.other">',
    '<meta name="twitter:player:stream" content="https://www.threads.net/video/stream">',
])
def test_video_meta_tags(head):
    assert classify(make_html(head=head)) == MediaType.VIDEO


def test_meta_tag_without_video_signal_is_ignored():
    html = make_html(head='<meta property="og:video" content="https://www.threads.net/@alice">')
    assert classify(html) == MediaType.IMAGE


def test_video_element_src():
    assert classify(make_html(f'<video src="{VIDEO_URL}"></video>')) == MediaType.VIDEO


def test_video_element_data_src():
    assert classify(make_html(f'<video data-src="{VIDEO_URL}"></video>')) == MediaType.VIDEO


def test_video_element_nested_source():
    body = f'<video><source src="{VIDEO_URL}" type="video/mp4"></video>'
    assert classify(make_html(body)) == MediaType.VIDEO


def test_blob_video_element_is_not_a_signal():
    assert classify(make_html('<video src="blob:https://www.threads.net/abc"></video>')) == MediaType.IMAGE


@pytest.mark.parametrize("state", [
    '{"__typename":"XDTGraphVideo"}',
    '{"is_video":true}',
    '{"media_type":2,"code":"C1"}',
    '{"product_type":"clips"}',
    '{"video_versions": [{"type":101}]}',
    '{"has_audio":false}',
])
def test_embedded_state_signatures(state):
    assert classify(make_html(f"<script>{state}</script>")) == MediaType.VIDEO


def test_media_type_one_is_not_a_video_signature():
    assert classify(make_html('<script>{"media_type":1}</script>')) == MediaType.IMAGE


def test_embedded_video_url_capture():
    state = '{"playback_url":"https:\\/\\/scontent.cdninstagram.com\\/o1\\/v\\/abc"}'
    assert classify(make_html(f"<script>{state}</script>")) == MediaType.VIDEO


def test_image_signals():
    assert classify(make_html(head=f'<meta property="og:image" content="{IMAGE_URL}">')) == MediaType.IMAGE
    assert classify(make_html(f'<img src="{IMAGE_URL}">')) == MediaType.IMAGE


def test_defaults_to_image_without_signals():
    assert classify(make_html("<p>hello</p>")) == MediaType.IMAGE


class FlakyPage(StaticPage):
    def query(self, selector):
        raise RuntimeError("detached")


def test_failing_probe_does_not_stop_classification():
    page = FlakyPage(make_html(f'<video src="{VIDEO_URL}"></video>'))
    assert ContentClassifier().classify(page) == MediaType.VIDEO
